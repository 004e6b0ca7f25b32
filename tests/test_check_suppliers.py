from unittest.mock import Mock, patch

import check_suppliers
from config import LoadedConfig
from models import HealthProbeResult


def _run(results, cfg=None):
    manager = Mock()
    manager.test_all.return_value = results
    with patch('check_suppliers.load_config', return_value=cfg or LoadedConfig(duffel_access_token='duffel_test_x')), \
            patch('check_suppliers.config_diagnostics', return_value='diagnostics'), \
            patch('check_suppliers.SupplierManager', return_value=manager) as manager_cls:
        code = check_suppliers.main()
    return code, manager_cls


def test_all_suppliers_reachable(capsys):
    code, manager_cls = _run({
        'database': HealthProbeResult(success=True, message='Database connected. 3 flights available.', latency_ms=2),
        'duffel': HealthProbeResult(success=True, message='Duffel API connection successful', latency_ms=120),
    })

    out = capsys.readouterr().out
    assert code == 0
    assert '✅ duffel: Duffel API connection successful (120 ms)' in out
    manager_cls.assert_called_once()


def test_failure_sets_exit_code(capsys):
    code, _ = _run({'amadeus': HealthProbeResult(success=False, message='Connection failed: boom')})

    assert code == 1
    assert '❌ amadeus: Connection failed: boom' in capsys.readouterr().out


def test_help_printed_without_credentials(capsys):
    with patch('check_suppliers.config_help_text', return_value='HOW TO CONFIGURE'):
        _run({}, cfg=LoadedConfig())

    assert 'HOW TO CONFIGURE' in capsys.readouterr().out
