from pathlib import Path

import config
from supplier_store import SupplierRecord


_ENV_VARS = (
    'APP_ENV',
    'AMADEUS_CLIENT_ID',
    'AMADEUS_CLIENT_SECRET',
    'AMADEUS_API_ENV',
    'DUFFEL_ACCESS_TOKEN',
    'DUFFEL_API_URL',
    'FLIGHTBUFFER_API_URL',
    'FLIGHTBUFFER_API_KEY',
    'FLIGHTBUFFER_API_SECRET',
    'FLIGHTBUFFER_SEARCHER_IDENTITY',
    'FLIGHT_CACHE_ENABLED',
    'FLIGHT_CACHE_TTL',
    'FLIGHT_SEARCH_MODE',
    'FLIGHT_SEARCH_TIMEOUT',
    'SIMULATE_SANDBOX_BOOKINGS',
)


def _force_cwd_only(monkeypatch, tmp_path: Path) -> None:
    """Make tests deterministic by ensuring only the temp CWD has config.env."""
    monkeypatch.chdir(tmp_path)

    # Ensure we don't accidentally load a per-user installer config.
    monkeypatch.delenv('LOCALAPPDATA', raising=False)

    # Ensure we don't pick up the repo's real config.env (project_root_dir/exe_dir)
    monkeypatch.setattr(config, 'project_root_dir', lambda: tmp_path)
    monkeypatch.setattr(config, 'exe_dir', lambda: tmp_path)

    # Empty (not deleted) so monkeypatch also removes whatever config.env sets
    for name in _ENV_VARS:
        monkeypatch.setenv(name, '')


def test_dotenv_path_prefers_existing(tmp_path, monkeypatch):
    # Create a config.env in CWD and ensure it can be found.
    env_file = tmp_path / "config.env"
    env_file.write_text("AMADEUS_CLIENT_ID=abc\nAMADEUS_CLIENT_SECRET=def\n")

    _force_cwd_only(monkeypatch, tmp_path)

    cfg = config.load_config()
    assert cfg.has_amadeus
    assert cfg.loaded_from is not None
    assert Path(cfg.loaded_from) == env_file


def test_dotenv_overrides_placeholders(tmp_path, monkeypatch):
    env_file = tmp_path / "config.env"
    env_file.write_text("AMADEUS_CLIENT_ID=realid\nAMADEUS_CLIENT_SECRET=realsecret\n")

    _force_cwd_only(monkeypatch, tmp_path)

    # Set placeholders in environment; config.env should override them.
    monkeypatch.setenv("AMADEUS_CLIENT_ID", "x")
    monkeypatch.setenv("AMADEUS_CLIENT_SECRET", "y")

    cfg = config.load_config()
    assert cfg.has_amadeus
    assert cfg.amadeus_client_id == "realid"
    assert cfg.amadeus_client_secret == "realsecret"


def test_placeholder_credentials_count_as_unset(tmp_path, monkeypatch):
    _force_cwd_only(monkeypatch, tmp_path)
    monkeypatch.setenv("DUFFEL_ACCESS_TOKEN", "your_access_token")

    cfg = config.load_config()
    assert cfg.loaded_from is None
    assert not cfg.has_duffel
    assert cfg.configured_suppliers() == []


def test_configured_suppliers_and_settings(tmp_path, monkeypatch):
    env_file = tmp_path / "config.env"
    env_file.write_text(
        "DUFFEL_ACCESS_TOKEN=duffel_test_abc123\n"
        "FLIGHTBUFFER_API_KEY=fbkey\n"
        "FLIGHTBUFFER_API_SECRET=fbsecret\n"
        "AMADEUS_API_ENV=production\n"
        "FLIGHT_CACHE_TTL=10\n"
        "FLIGHT_SEARCH_MODE=External\n"
        "FLIGHT_SEARCH_TIMEOUT=notanumber\n"
    )
    _force_cwd_only(monkeypatch, tmp_path)

    cfg = config.load_config()
    assert cfg.configured_suppliers() == ['flightbuffer', 'duffel']
    assert cfg.amadeus_base_url == config.AMADEUS_PRODUCTION_URL
    assert cfg.cache_ttl_minutes == 10
    assert cfg.search_mode == 'external'
    assert cfg.search_timeout == 45

    duffel = cfg.supplier_config('duffel')
    assert duffel['environment'] == 'test'
    assert duffel['api_key'] == 'duffel_test_abc123'
    assert cfg.supplier_config('flightbuffer')['api_secret'] == 'fbsecret'
    assert cfg.supplier_config('unknown') == {}


def test_resolve_settings_precedence():
    file_config = {'base_url': 'https://file.example/', 'api_key': 'file-key', 'timeout': 20,
                   'retry_times': 2, 'some_flag': True}
    record = SupplierRecord(
        code='duffel',
        driver='duffel',
        name='Duffel NDC',
        api_key='record-key',
        timeout=None,
        config={'retry_delay_ms': 50},
    )

    settings = config.resolve_settings('duffel', file_config, record=record)

    assert settings.name == 'Duffel NDC'
    assert settings.base_url == 'https://file.example'
    assert settings.api_key == 'record-key'
    assert settings.timeout == 20
    assert settings.retry_times == 2
    assert settings.retry_delay_ms == 50
    assert settings.verify_ssl is True
    assert settings.get('some_flag') is True
    assert settings.driver == 'duffel'


def test_resolve_settings_defaults():
    settings = config.resolve_settings('flightbuffer')
    assert settings.name == 'Flightbuffer'
    assert settings.timeout == 30
    assert settings.retry_times == 3
    assert settings.search_cache_ttl == 300
    assert not settings.is_production
