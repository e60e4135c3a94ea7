# /// script
# requires-python = ">=3.12"
# dependencies = [
#   "defusedxml",
#   "httpx",
#   "humanize",
#   "python-dotenv",
#   "tqdm",
# ]
# ///

"""
Exports Plex library metadata (movies, TV shows, music) to CSV files.
It's server-friendly, in that it makes sequential requests for pages of 50 items with a short sleep between them,
  and retries failed requests a few times before giving up on a library.

Usage:
  uv run ./export_media_library.py --token YOUR_TOKEN --list
  uv run ./export_media_library.py --token YOUR_TOKEN --name "Movies" --output movies.csv
  uv run ./export_media_library.py --token YOUR_TOKEN --url http://plex.local:32400

Args:
  --token (required unless PLEX_TOKEN is set in the environment or the config file)
  --url, --list, --name, --id, --output, --output-dir, --force, --quiet, --verbose,
  --music-mode, --no-clean, --progress-stderr, --config, --version

With neither --name nor --id, every library is exported to `{output-dir}/{library_name}.csv`.
"""

import argparse
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

import httpx

from exporter_config import DEFAULT_CONFIG_PATH, MUSIC_MODES, SCRIPT_VERSION, ExporterConfig, load_config
from exporter_errors import (
    E_GENERAL_ERROR,
    E_INVALID_ARGS,
    E_PERMISSION_ERROR,
    E_SUCCESS,
    ExporterError,
)
from instance_lock import LOCK_FILE, InstanceLock
from library_dispatcher import Library, LibraryDispatcher, LibraryOutcome
from plex_fetcher import PaginatedFetcher, PlexApiClient
from record_exporters import ExportResult

## setup logging ----------------------------------------------------
log_level_name: str = os.getenv('LOG_LEVEL', 'INFO').upper()
log_level = getattr(
    logging, log_level_name, logging.INFO
)  # maps the string name to the corresponding logging level constant; defaults to INFO
LOG_FORMAT: str = '[%(asctime)s] %(levelname)s [%(module)s-%(funcName)s()::%(lineno)d] %(message)s'
LOG_DATEFMT: str = '%d/%b/%Y %H:%M:%S'
logging.basicConfig(level=log_level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
if log_level <= logging.INFO:
    for noisy in ('httpx', 'httpcore'):  # prevent httpx from logging
        lg = logging.getLogger(noisy)
        lg.setLevel(logging.WARNING)
        lg.propagate = False  # don't bubble up to root
log = logging.getLogger(__name__)

## constants --------------------------------------------------------
LOG_DIR: Path = Path('logs')
DEFAULT_EXPORT_FILENAME: str = 'library_export.csv'


class CLI:
    """
    Manages command-line parsing for the script entrypoint.
    - Flags mirror the config-file keys; a flag that isn't given leaves the config value alone
      (so boolean flags default to None, not False).
    - Exposes a parse helper to support testing with custom argv.
    """

    @staticmethod
    def build_parser() -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description=f'Media Library Exporter (for Plex) v{SCRIPT_VERSION}: export Plex libraries to CSV.'
        )
        parser.add_argument('-t', '--token', default=None, help='Plex authentication token.')
        parser.add_argument('-u', '--url', default=None, help='Plex server URL (default: from config, else http://localhost:32400).')
        parser.add_argument('-l', '--list', action='store_true', help='List all libraries and exit.')
        target = parser.add_mutually_exclusive_group()
        target.add_argument('-n', '--name', default=None, help='Export the library with this name.')
        target.add_argument('-i', '--id', dest='library_id', default=None, help='Export the library with this ID.')
        parser.add_argument('-o', '--output', default=None, help='Output file (single-library exports).')
        parser.add_argument('-d', '--output-dir', default=None, help='Output directory (default: from config, else exports).')
        parser.add_argument('-f', '--force', action='store_true', default=None, help='Overwrite existing files.')
        parser.add_argument('-q', '--quiet', action='store_true', default=None, help='Quiet mode (warnings and errors only; no progress).')
        parser.add_argument('-v', '--verbose', action='store_true', default=None, help='Debug mode (verbose output).')
        parser.add_argument(
            '--music-mode',
            choices=MUSIC_MODES,
            default=None,
            help='Music libraries: one row per album (default) or per track.',
        )
        parser.add_argument(
            '--no-clean',
            action='store_true',
            default=None,
            help='Skip the pass that strips line-breaks from exported fields.',
        )
        parser.add_argument(
            '--progress-stderr', action='store_true', default=None, help='Write progress bars to stderr instead of stdout.'
        )
        parser.add_argument(
            '--config', default=str(DEFAULT_CONFIG_PATH), help=f'Config file path (default: {DEFAULT_CONFIG_PATH}).'
        )
        parser.add_argument('--version', action='version', version=f'Media Library Exporter (for Plex) v{SCRIPT_VERSION}')
        return parser

    @staticmethod
    def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
        return CLI.build_parser().parse_args(argv)


def build_config(args: argparse.Namespace, environ: dict[str, str] | None = None) -> ExporterConfig:
    """
    Loads the config file, then layers the command-line flags on top.
    """
    base: ExporterConfig = load_config(Path(args.config), environ)
    return base.with_overrides(
        plex_url=args.url,
        plex_token=args.token,
        output_dir=args.output_dir,
        force=args.force,
        quiet=args.quiet,
        debug=args.verbose,
        music_mode=args.music_mode,
        clean_newlines=False if args.no_clean else None,
        progress_to_stderr=args.progress_stderr,
    )


def configure_logging(config: ExporterConfig, timestamp: str) -> None:
    """
    Adjusts the console level for quiet/debug, and adds log-files when ENABLE_LOGGING is on.
    Raises PermissionError if the log directory can't be written.
    """
    console_level: int = logging.DEBUG if config.debug else log_level
    if config.quiet:
        console_level = max(console_level, logging.WARNING)
    root: logging.Logger = logging.getLogger()
    for handler in root.handlers:
        handler.setLevel(console_level)
    root.setLevel(logging.DEBUG if config.debug or config.enable_logging else console_level)
    if not config.enable_logging:
        return
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    if not os.access(LOG_DIR, os.W_OK):
        raise PermissionError(f'Cannot write to log directory {LOG_DIR}')
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    file_handler = logging.FileHandler(LOG_DIR / f'media-library-exporter-{timestamp}.log', encoding='utf-8')
    file_handler.setLevel(logging.DEBUG if config.debug else logging.INFO)
    file_handler.setFormatter(formatter)
    error_handler = logging.FileHandler(LOG_DIR / f'media-library-exporter-{timestamp}-error.log', encoding='utf-8')
    error_handler.setLevel(logging.WARNING)
    error_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.addHandler(error_handler)


def resolve_output_path(config: ExporterConfig, output: str | None, library_name: str | None) -> Path:
    """
    Default filename is the library name with spaces as hyphens; the output dir is prepended.
    """
    filename: str
    if output:
        filename = output
    elif library_name:
        filename = f'{library_name.replace(" ", "-")}.csv'
    else:
        filename = DEFAULT_EXPORT_FILENAME
    if config.output_dir:
        return Path(config.output_dir) / filename
    return Path(filename)


def report_outcomes(outcomes: list[LibraryOutcome]) -> None:
    """
    Logs a one-line summary per library after an export-all run.
    """
    for outcome in outcomes:
        if outcome.result is not None:
            result: ExportResult = outcome.result
            log.info(
                f'{outcome.library.name}: {result.status.value}, {result.exported_count} row(s) -> {outcome.output_path}'
            )
        else:
            log.warning(f'{outcome.library.name}: failed ({outcome.error})')
    failed: int = sum(1 for outcome in outcomes if not outcome.succeeded)
    log.info(f'Done. Exported {len(outcomes) - failed} of {len(outcomes)} library(ies).')


def run(args: argparse.Namespace, config: ExporterConfig, dispatcher: LibraryDispatcher) -> int:
    """
    Dispatches to list / single-export / export-all.
    Called by: main()
    """
    if args.list:
        log.info('Listing available libraries...')
        dispatcher.list_libraries()
        return E_SUCCESS

    if args.name or args.library_id:
        library: Library = (
            dispatcher.find_library_by_name(args.name) if args.name else dispatcher.find_library(args.library_id)
        )
        output_path: Path = resolve_output_path(config, args.output, library.name)
        log.info(f'Exporting library: {library.name}')
        dispatcher.export_library(library.id, output_path)
        return E_SUCCESS

    outcomes: list[LibraryOutcome] = dispatcher.export_all(Path(config.output_dir or '.'))
    report_outcomes(outcomes)
    return E_SUCCESS


def main(
    argv: list[str] | None = None,
    transport: httpx.BaseTransport | None = None,
    lock_path: Path = LOCK_FILE,
) -> int:
    """
    Loads config, sets up logging, takes the instance lock, and runs the requested export.

    Flow:
    - Parses CLI args; loads (or creates) the config file; applies CLI overrides.
    - Adjusts logging for quiet/debug; adds log files when enabled.
    - Requires a Plex token.
    - Takes the single-instance lock (released on any exit).
    - Creates one httpx client for the run; lists, exports one library, or exports all.
    - Maps exporter errors to exit codes; warnings never change the exit code.

    Called by: dundermain
    """
    ## handle args and config ---------------------------------------
    args: argparse.Namespace = CLI.parse_args(argv)
    timestamp: str = datetime.now().strftime('%Y%m%d_%H%M%S')
    try:
        config: ExporterConfig = build_config(args)
        configure_logging(config, timestamp)
    except ExporterError as exc:
        log.error(str(exc))
        return exc.exit_code
    except PermissionError as exc:
        log.error(f'Permission error: {exc}')
        return E_PERMISSION_ERROR

    if not config.plex_token:
        log.error('Plex token is required. Use -t option (or set PLEX_TOKEN).')
        return E_INVALID_ARGS

    ## lock, connect, and run ----------------------------------------
    try:
        with InstanceLock(lock_path):
            with PlexApiClient.build_http_client(config, transport) as client:
                api = PlexApiClient(config, client)
                fetcher = PaginatedFetcher(api, config)
                dispatcher = LibraryDispatcher(fetcher, config)
                return run(args, config, dispatcher)
    except ExporterError as exc:
        log.error(str(exc))
        return exc.exit_code
    except PermissionError as exc:
        log.error(f'Permission error: {exc}')
        return E_PERMISSION_ERROR
    except OSError as exc:
        log.error(f'I/O error: {exc}')
        return E_GENERAL_ERROR

    ## end def main()


if __name__ == '__main__':
    sys.exit(main())
