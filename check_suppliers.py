"""Quick connectivity check for every configured flight supplier"""
import logging
import sys

from config import config_diagnostics, config_help_text, load_config
from supplier_manager import SupplierManager


def main() -> int:
    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    print("=" * 50)
    print("Flight Supplier Configuration")
    print("=" * 50)
    print(config_diagnostics())
    print()

    cfg = load_config()
    if not cfg.configured_suppliers():
        print(config_help_text())

    manager = SupplierManager(cfg)
    results = manager.test_all()

    print("=" * 50)
    print("Connection Tests")
    print("=" * 50)
    failures = 0
    for code, result in results.items():
        if result.success:
            print(f"✅ {code}: {result.message} ({result.latency_ms} ms)")
        else:
            failures += 1
            print(f"❌ {code}: {result.message}")
    print("=" * 50)

    return 1 if failures else 0


if __name__ == '__main__':
    sys.exit(main())
