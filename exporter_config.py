"""
Builds the run's immutable configuration.

Sources, lowest to highest precedence:
- built-in defaults
- the config file (`config/media-library-exporter.conf`, `KEY="value"` lines; created on first run)
- `PLEX_URL` / `PLEX_TOKEN` environment variables
- command-line flags
"""

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path

from dotenv import dotenv_values

from exporter_errors import ConfigError

log = logging.getLogger(__name__)

SCRIPT_VERSION: str = '1.0.1'
DEFAULT_PLEX_URL: str = 'http://localhost:32400'
DEFAULT_OUTPUT_DIR: str = 'exports'
CONFIG_DIR: str = 'config'
DEFAULT_CONFIG_PATH: Path = Path(CONFIG_DIR) / 'media-library-exporter.conf'
MUSIC_MODES: tuple[str, ...] = ('albums', 'tracks')

DEFAULT_CONFIG_TEXT: str = """# Media Library Exporter (for Plex) Configuration File
# Location: config/media-library-exporter.conf

###################
# Server Settings #
###################

# Plex server URL (required)
PLEX_URL="http://localhost:32400"

# Your Plex authentication token (required)
# To find your token: https://support.plex.tv/articles/204059436-finding-an-authentication-token-x-plex-token/
PLEX_TOKEN=""

########################
# Connection Settings  #
########################

# Number of retry attempts for failed API calls
RETRY_COUNT=3

# Delay between retries in seconds
RETRY_DELAY=5

###################
# Export Settings #
###################

# Default output directory for exports
OUTPUT_DIR="exports"

# Date format for timestamps (strftime format)
DATE_FORMAT="%Y-%m-%d %H:%M:%S"

# Force overwrite existing files (true/false)
FORCE=false

# Strip embedded line-breaks from exported fields (true/false)
CLEAN_NEWLINES=true

# Music libraries: export one row per album or per track (albums/tracks)
MUSIC_MODE="albums"

###################
# Debug Settings  #
###################

# Enable debug mode (true/false)
DEBUG=false

# Enable logging to files under logs/ (true/false)
ENABLE_LOGGING=false

# Whether to run in quiet mode (true/false)
QUIET=false
"""


@dataclass(frozen=True)
class ExporterConfig:
    """
    Everything the fetcher, exporters, and dispatcher need; built once, passed explicitly.
    """

    plex_url: str = DEFAULT_PLEX_URL
    plex_token: str = ''
    retry_count: int = 3
    retry_delay: float = 5.0
    output_dir: str = DEFAULT_OUTPUT_DIR
    date_format: str = '%Y-%m-%d %H:%M:%S'
    force: bool = False
    debug: bool = False
    quiet: bool = False
    enable_logging: bool = False
    clean_newlines: bool = True
    music_mode: str = 'albums'
    progress_to_stderr: bool = False

    def __post_init__(self) -> None:
        if self.retry_count < 1:
            raise ConfigError(f'RETRY_COUNT must be at least 1, got {self.retry_count}')
        if self.retry_delay < 0:
            raise ConfigError(f'RETRY_DELAY must not be negative, got {self.retry_delay}')
        if self.music_mode not in MUSIC_MODES:
            raise ConfigError(f'MUSIC_MODE must be one of {", ".join(MUSIC_MODES)}, got {self.music_mode!r}')
        object.__setattr__(self, 'plex_url', self.plex_url.rstrip('/'))

    def with_overrides(self, **overrides: object) -> 'ExporterConfig':
        """
        Returns a copy with the non-None overrides applied (eg from CLI flags).
        """
        changes: dict[str, object] = {key: val for key, val in overrides.items() if val is not None}
        return replace(self, **changes)


def parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _parse_int(key: str, value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as exc:
        raise ConfigError(f'{key} must be an integer, got {value!r}') from exc


def _parse_float(key: str, value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError as exc:
        raise ConfigError(f'{key} must be a number, got {value!r}') from exc


def ensure_config_file(config_path: Path) -> bool:
    """
    Writes the default config file if none exists. Returns True when it created one.
    """
    if config_path.exists():
        return False
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_CONFIG_TEXT, encoding='utf-8')
    log.info(f'Created default configuration file: {config_path}')
    return True


def config_from_values(values: dict[str, str | None], environ: dict[str, str] | None = None) -> ExporterConfig:
    """
    Maps config-file keys (plus PLEX_URL/PLEX_TOKEN from the environment) onto an ExporterConfig.
    """
    env: dict[str, str] = dict(os.environ) if environ is None else environ
    plex_url: str = env.get('PLEX_URL') or values.get('PLEX_URL') or DEFAULT_PLEX_URL
    plex_token: str = env.get('PLEX_TOKEN') or values.get('PLEX_TOKEN') or ''
    return ExporterConfig(
        plex_url=plex_url,
        plex_token=plex_token,
        retry_count=_parse_int('RETRY_COUNT', values.get('RETRY_COUNT'), 3),
        retry_delay=_parse_float('RETRY_DELAY', values.get('RETRY_DELAY'), 5.0),
        output_dir=values.get('OUTPUT_DIR') or DEFAULT_OUTPUT_DIR,
        date_format=values.get('DATE_FORMAT') or '%Y-%m-%d %H:%M:%S',
        force=parse_bool(values.get('FORCE')),
        debug=parse_bool(values.get('DEBUG')),
        quiet=parse_bool(values.get('QUIET')),
        enable_logging=parse_bool(values.get('ENABLE_LOGGING')),
        clean_newlines=parse_bool(values.get('CLEAN_NEWLINES'), default=True),
        music_mode=(values.get('MUSIC_MODE') or 'albums').strip().lower(),
    )


def load_config(config_path: Path = DEFAULT_CONFIG_PATH, environ: dict[str, str] | None = None) -> ExporterConfig:
    """
    Loads (creating if needed) the config file and returns the resulting ExporterConfig.
    An unreadable file is logged and ignored; defaults apply.
    """
    ensure_config_file(config_path)
    values: dict[str, str | None] = {}
    try:
        values = dict(dotenv_values(config_path))
        log.debug(f'Loaded configuration from {config_path}')
    except OSError as exc:
        log.warning(f'Cannot read configuration file: {config_path} ({exc})')
    return config_from_values(values, environ)
