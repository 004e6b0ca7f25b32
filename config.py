from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

APP_NAME_NO_SPACES = 'FlightSupplierHub'

SUPPLIER_CREDENTIAL_VARS = (
    'AMADEUS_CLIENT_ID',
    'AMADEUS_CLIENT_SECRET',
    'DUFFEL_ACCESS_TOKEN',
    'FLIGHTBUFFER_API_KEY',
    'FLIGHTBUFFER_API_SECRET',
)

AMADEUS_TEST_URL = 'https://test.api.amadeus.com'
AMADEUS_PRODUCTION_URL = 'https://api.amadeus.com'


def is_frozen() -> bool:
    return bool(getattr(sys, 'frozen', False))


def exe_dir() -> Path:
    return Path(sys.executable).resolve().parent if is_frozen() else Path(__file__).resolve().parent


def project_root_dir() -> Path:
    # For dev runs, keep config.env next to the source files.
    return Path(__file__).resolve().parent


def _user_config_dir() -> Optional[Path]:
    """Return the per-user config directory (Windows), if any."""
    local_appdata = os.getenv('LOCALAPPDATA')
    if not local_appdata:
        return None
    return Path(local_appdata) / APP_NAME_NO_SPACES


def _candidate_dotenv_paths() -> list[Path]:
    """Return candidate locations for config.env.

    Precedence rule (first existing file wins):
    1) next to the executable (frozen) / or next to sources (dev)
    2) current working directory
    3) per-user location: %LOCALAPPDATA%/FlightSupplierHub/config.env
    """
    candidates: list[Path] = [exe_dir() / 'config.env', project_root_dir() / 'config.env']

    try:
        candidates.append(Path.cwd() / 'config.env')
    except OSError:
        pass

    user_dir = _user_config_dir()
    if user_dir is not None:
        candidates.append(user_dir / 'config.env')

    # De-dup while preserving order
    out: list[Path] = []
    seen: set[str] = set()
    for p in candidates:
        key = str(p.resolve())
        if key in seen:
            continue
        seen.add(key)
        out.append(p)
    return out


def dotenv_path() -> Path:
    """First existing config.env candidate, otherwise the dev default."""
    for p in _candidate_dotenv_paths():
        if p.is_file():
            return p
    return project_root_dir() / 'config.env'


def _is_placeholder(value: str) -> bool:
    v = (value or '').strip()
    if not v:
        return True
    # Only reject obvious placeholders, not values that could be real credentials
    return v.lower() in {'x', 'y', 'your_client_id', 'your_client_secret', 'your_token',
                         'your_api_key', 'your_api_secret', 'your_access_token',
                         'duffel_test_xxx', 'placeholder', 'example', 'test', 'changeme'}


def load_dotenv_once() -> Optional[Path]:
    """Load config.env if present.

    config.env wins over the process environment whenever any supplier
    credential in the environment is missing or a placeholder.
    """
    env_path = dotenv_path()
    if not env_path.is_file():
        return None

    should_override = any(_is_placeholder(os.getenv(name) or '') for name in SUPPLIER_CREDENTIAL_VARS)
    try:
        load_dotenv(dotenv_path=str(env_path), override=should_override)
    except OSError as e:
        logger.warning(f"Failed to load config.env: {e}")
        return None
    return env_path


def _env(name: str, default: str = '') -> str:
    return (os.getenv(name) or default).strip()


def _env_secret(name: str) -> str:
    value = _env(name)
    if value and _is_placeholder(value):
        logger.warning(f"{name} contains a placeholder value. Set the real credential in config.env")
        return ''
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if not raw:
        return default
    return raw.lower() in {'1', 'true', 'yes', 'on'}


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    try:
        return int(raw) if raw else default
    except ValueError:
        logger.warning(f"{name}={raw!r} is not an integer, using {default}")
        return default


def _default_data_path(filename: str) -> str:
    user_dir = _user_config_dir()
    base = user_dir if user_dir is not None else project_root_dir()
    return str(base / filename)


@dataclass(frozen=True)
class LoadedConfig:
    app_env: str = 'local'
    amadeus_client_id: str = ''
    amadeus_client_secret: str = ''
    amadeus_api_env: str = 'test'
    duffel_access_token: str = ''
    duffel_api_url: str = 'https://api.duffel.com'
    flightbuffer_api_url: str = 'https://api.flightbuffer.com'
    flightbuffer_api_key: str = ''
    flightbuffer_api_secret: str = ''
    flightbuffer_searcher_identity: str = ''
    cache_enabled: bool = True
    cache_ttl_minutes: int = 5
    cache_db_path: str = 'flight_cache.db'
    inventory_db_path: str = 'flights.db'
    supplier_db_path: str = 'suppliers.db'
    search_mode: str = 'hybrid'
    search_timeout: int = 45
    max_results: int = 100
    sort_by: str = 'price'
    sort_direction: str = 'asc'
    deduplicate: bool = True
    verify_ssl: bool = True
    simulate_sandbox_bookings: bool = False
    loaded_from: Optional[Path] = None

    @property
    def has_amadeus(self) -> bool:
        return bool(self.amadeus_client_id and self.amadeus_client_secret)

    @property
    def has_duffel(self) -> bool:
        return bool(self.duffel_access_token)

    @property
    def has_flightbuffer(self) -> bool:
        return bool(self.flightbuffer_api_key)

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == 'production'

    @property
    def amadeus_base_url(self) -> str:
        return AMADEUS_PRODUCTION_URL if self.amadeus_api_env.lower() == 'production' else AMADEUS_TEST_URL

    def configured_suppliers(self) -> list[str]:
        """External suppliers that have credentials, in file order."""
        out = []
        if self.has_flightbuffer:
            out.append('flightbuffer')
        if self.has_duffel:
            out.append('duffel')
        if self.has_amadeus:
            out.append('amadeus')
        return out

    def supplier_config(self, code: str) -> Dict[str, Any]:
        """File-level settings for one supplier (empty for unknown codes)."""
        common = {'verify_ssl': self.verify_ssl}
        if code == 'amadeus':
            return {
                **common,
                'driver': 'amadeus',
                'base_url': self.amadeus_base_url,
                'client_id': self.amadeus_client_id,
                'client_secret': self.amadeus_client_secret,
                'environment': self.amadeus_api_env.lower(),
                'timeout': 30,
                'retry_times': 2,
                'retry_delay_ms': 200,
                'simulate_sandbox_bookings': self.simulate_sandbox_bookings,
            }
        if code == 'duffel':
            return {
                **common,
                'driver': 'duffel',
                'base_url': self.duffel_api_url,
                'api_key': self.duffel_access_token,
                'environment': 'test' if self.duffel_access_token.startswith('duffel_test') else 'production',
                'timeout': 30,
                'retry_times': 2,
                'retry_delay_ms': 200,
            }
        if code == 'flightbuffer':
            return {
                **common,
                'driver': 'flightbuffer',
                'base_url': self.flightbuffer_api_url,
                'api_key': self.flightbuffer_api_key,
                'api_secret': self.flightbuffer_api_secret,
                'searcher_identity': self.flightbuffer_searcher_identity,
                'timeout': 30,
                'retry_times': 3,
                'retry_delay_ms': 100,
            }
        if code == 'database':
            return {'driver': 'database', 'inventory_db_path': self.inventory_db_path}
        return {}


def load_config() -> LoadedConfig:
    """Load settings from environment variables and/or config.env.

    We only read config.env; we never modify it.
    """
    loaded_from = load_dotenv_once()

    return LoadedConfig(
        app_env=_env('APP_ENV', 'local').lower(),
        amadeus_client_id=_env_secret('AMADEUS_CLIENT_ID'),
        amadeus_client_secret=_env_secret('AMADEUS_CLIENT_SECRET'),
        amadeus_api_env=_env('AMADEUS_API_ENV', 'test'),
        duffel_access_token=_env_secret('DUFFEL_ACCESS_TOKEN'),
        duffel_api_url=_env('DUFFEL_API_URL', 'https://api.duffel.com'),
        flightbuffer_api_url=_env('FLIGHTBUFFER_API_URL', 'https://api.flightbuffer.com'),
        flightbuffer_api_key=_env_secret('FLIGHTBUFFER_API_KEY'),
        flightbuffer_api_secret=_env_secret('FLIGHTBUFFER_API_SECRET'),
        flightbuffer_searcher_identity=_env('FLIGHTBUFFER_SEARCHER_IDENTITY'),
        cache_enabled=_env_bool('FLIGHT_CACHE_ENABLED', True),
        cache_ttl_minutes=_env_int('FLIGHT_CACHE_TTL', 5),
        cache_db_path=_env('FLIGHT_CACHE_DB') or _default_data_path('flight_cache.db'),
        inventory_db_path=_env('FLIGHT_INVENTORY_DB') or _default_data_path('flights.db'),
        supplier_db_path=_env('SUPPLIER_DB') or _default_data_path('suppliers.db'),
        search_mode=_env('FLIGHT_SEARCH_MODE', 'hybrid').lower(),
        search_timeout=_env_int('FLIGHT_SEARCH_TIMEOUT', 45),
        max_results=_env_int('FLIGHT_MAX_RESULTS', 100),
        sort_by=_env('FLIGHT_SORT_BY', 'price').lower(),
        sort_direction=_env('FLIGHT_SORT_DIRECTION', 'asc').lower(),
        verify_ssl=_env_bool('SUPPLIER_VERIFY_SSL', True),
        simulate_sandbox_bookings=_env_bool('SIMULATE_SANDBOX_BOOKINGS', False),
        loaded_from=loaded_from,
    )


# ============================================================================
# PER-SUPPLIER SETTINGS
# ============================================================================

SETTINGS_DEFAULTS: Dict[str, Any] = {
    'base_url': '',
    'api_key': '',
    'api_secret': '',
    'client_id': '',
    'client_secret': '',
    'timeout': 30,
    'retry_times': 3,
    'retry_delay_ms': 100,
    'verify_ssl': True,
    'environment': 'test',
    'simulate_sandbox_bookings': False,
    'searcher_identity': '',
    'search_cache_ttl': 300,
}


@dataclass(frozen=True)
class SupplierSettings:
    """Effective settings for one adapter instance.

    Resolved once, in this order of precedence:
    supplier record > config.env / environment > SETTINGS_DEFAULTS.
    """
    code: str
    driver: str
    name: str
    base_url: str = ''
    api_key: str = ''
    api_secret: str = ''
    client_id: str = ''
    client_secret: str = ''
    timeout: int = 30
    retry_times: int = 3
    retry_delay_ms: int = 100
    verify_ssl: bool = True
    environment: str = 'test'
    simulate_sandbox_bookings: bool = False
    searcher_identity: str = ''
    search_cache_ttl: int = 300
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == 'production'

    def get(self, key: str, default: Any = None) -> Any:
        return self.extra.get(key, default)


def resolve_settings(code: str, file_config: Optional[Dict[str, Any]] = None,
                     record: Any = None, driver: Optional[str] = None) -> SupplierSettings:
    """Merge defaults, file config and an optional persisted supplier record."""
    merged: Dict[str, Any] = dict(SETTINGS_DEFAULTS)
    merged.update({k: v for k, v in (file_config or {}).items() if v is not None})

    name = code.capitalize()
    if record is not None:
        name = record.name or name
        record_values = {
            'base_url': record.api_base_url,
            'api_key': record.api_key,
            'api_secret': record.api_secret,
            'timeout': record.timeout,
            'retry_times': record.retry_times,
        }
        merged.update({k: v for k, v in record_values.items() if v not in (None, '')})
        merged.update(record.config or {})
        driver = driver or record.driver

    known = {k: merged.pop(k) for k in list(merged) if k in SETTINGS_DEFAULTS}
    resolved_driver = driver or merged.pop('driver', None) or code
    merged.pop('driver', None)

    return SupplierSettings(
        code=code,
        driver=resolved_driver,
        name=name,
        base_url=str(known['base_url'] or '').rstrip('/'),
        api_key=known['api_key'] or '',
        api_secret=known['api_secret'] or '',
        client_id=known['client_id'] or '',
        client_secret=known['client_secret'] or '',
        timeout=int(known['timeout']),
        retry_times=int(known['retry_times']),
        retry_delay_ms=int(known['retry_delay_ms']),
        verify_ssl=bool(known['verify_ssl']),
        environment=str(known['environment']).lower(),
        simulate_sandbox_bookings=bool(known['simulate_sandbox_bookings']),
        searcher_identity=known['searcher_identity'] or '',
        search_cache_ttl=int(known['search_cache_ttl']),
        extra=merged,
    )


def _mask(s: str) -> str:
    if not s:
        return ''
    if len(s) <= 6:
        return '*' * len(s)
    return f"{s[:3]}***{s[-3:]}"


def config_diagnostics() -> str:
    """Human-readable diagnostics for config/env loading (no secrets leaked)."""
    cfg = load_config()

    lines = []
    lines.append(f"Frozen: {is_frozen()}")
    lines.append(f"CWD: {Path.cwd()}")
    lines.append(f"Resolved config.env: {dotenv_path()}")
    lines.append("Candidates searched:")
    for p in _candidate_dotenv_paths():
        lines.append(f"  - {p} (exists={p.is_file()})")

    lines.append(f"Loaded from: {cfg.loaded_from}")
    lines.append(f"APP_ENV: {cfg.app_env}")
    lines.append(f"Configured suppliers: {', '.join(cfg.configured_suppliers()) or 'none'}")
    lines.append(f"AMADEUS_CLIENT_ID: {_mask(cfg.amadeus_client_id)}")
    lines.append(f"AMADEUS_CLIENT_SECRET: {_mask(cfg.amadeus_client_secret)}")
    lines.append(f"AMADEUS_API_ENV: {cfg.amadeus_api_env}")
    lines.append(f"DUFFEL_ACCESS_TOKEN: {_mask(cfg.duffel_access_token)}")
    lines.append(f"FLIGHTBUFFER_API_KEY: {_mask(cfg.flightbuffer_api_key)}")
    lines.append(f"FLIGHTBUFFER_API_SECRET: {_mask(cfg.flightbuffer_api_secret)}")
    lines.append(f"Cache: enabled={cfg.cache_enabled} ttl={cfg.cache_ttl_minutes}min db={cfg.cache_db_path}")
    lines.append(f"Inventory DB: {cfg.inventory_db_path}")
    lines.append(f"Supplier DB: {cfg.supplier_db_path}")
    return "\n".join(lines)


def config_help_text() -> str:
    env_file = dotenv_path()
    user_dir = _user_config_dir()
    return (
        'No supplier credentials configured. Create a config.env file and set at least one supplier:\n\n'
        'Amadeus:\n'
        '  AMADEUS_CLIENT_ID=...\n'
        '  AMADEUS_CLIENT_SECRET=...\n'
        '  AMADEUS_API_ENV=test|production\n\n'
        'Duffel:\n'
        '  DUFFEL_ACCESS_TOKEN=...\n\n'
        'FlightBuffer:\n'
        '  FLIGHTBUFFER_API_KEY=...\n'
        '  FLIGHTBUFFER_API_SECRET=...\n\n'
        f'config.env location (first found): {env_file}\n'
        + (f'Per-user config folder: {user_dir}\\config.env\n' if user_dir else '')
    )
