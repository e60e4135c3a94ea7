"""
Routes library exports to the right record exporter.

- Reads the server's library sections (once per run) to learn each library's id, name, and kind.
- Enforces the output-file overwrite policy before anything is written.
- Exports a single library, or every library in turn (continuing past per-library failures).
"""

import enum
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path

from exporter_config import ExporterConfig
from exporter_errors import AlreadyExists, ExporterError, ExportIOError, LibraryNotFound, UnsupportedLibraryKind
from plex_fetcher import PaginatedFetcher
from plex_markup import MarkupFieldExtractor
from record_exporters import (
    AlbumExporter,
    ExportResult,
    ExportStatus,
    MovieExporter,
    RecordExporter,
    ShowExporter,
    TrackExporter,
)

log = logging.getLogger(__name__)

SECTIONS_PATH: str = '/library/sections'


class LibraryKind(enum.Enum):
    MOVIE = 'movie'
    SHOW = 'show'
    ALBUM = 'artist'
    UNKNOWN = 'unknown'

    @classmethod
    def from_server_type(cls, server_type: str) -> 'LibraryKind':
        for kind in cls:
            if kind is not cls.UNKNOWN and kind.value == server_type:
                return kind
        return cls.UNKNOWN


@dataclass(frozen=True)
class Library:
    id: str
    name: str
    kind: LibraryKind
    server_type: str = ''

    def display_line(self) -> str:
        return f'{self.name} (ID: {self.id}, Type: {self.server_type})'

    def default_filename(self) -> str:
        """
        Batch-export filename: spaces (and path separators) become underscores.
        """
        safe_name: str = self.name.replace(' ', '_').replace('/', '_').replace('\\', '_')
        return f'{safe_name}.csv'


@dataclass(frozen=True)
class LibraryOutcome:
    """
    One library's result in an export-all run: either a result or the error that stopped it.
    """

    library: Library
    output_path: Path
    result: ExportResult | None = None
    error: ExporterError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class LibraryDispatcher:
    def __init__(self, fetcher: PaginatedFetcher, config: ExporterConfig) -> None:
        self.fetcher: PaginatedFetcher = fetcher
        self.config: ExporterConfig = config
        self._libraries: list[Library] | None = None

    ## library discovery --------------------------------------------
    def get_libraries(self) -> list[Library]:
        """
        Fetches `/library/sections` (not paginated; section lists are small). Cached for the run.
        """
        if self._libraries is not None:
            return self._libraries
        log.info('Retrieving library sections...')
        root: ET.Element = self.fetcher.get_document(SECTIONS_PATH)
        libraries: list[Library] = []
        for directory in root.findall('Directory'):
            key: str = MarkupFieldExtractor.attribute(directory, 'key')
            title: str = MarkupFieldExtractor.attribute(directory, 'title')
            server_type: str = MarkupFieldExtractor.attribute(directory, 'type')
            if not key or not title:
                continue
            libraries.append(
                Library(id=key, name=title, kind=LibraryKind.from_server_type(server_type), server_type=server_type)
            )
        log.debug(f'found {len(libraries)} library section(s)')
        self._libraries = libraries
        return libraries

    def list_libraries(self) -> list[Library]:
        libraries: list[Library] = self.get_libraries()
        print('Available libraries:')
        for library in libraries:
            print(f'  {library.display_line()}')
        return libraries

    def find_library(self, library_id: str) -> Library:
        for library in self.get_libraries():
            if library.id == library_id:
                return library
        raise LibraryNotFound(f'Library with ID {library_id!r} not found')

    def find_library_by_name(self, name: str) -> Library:
        for library in self.get_libraries():
            if library.name == name:
                return library
        raise LibraryNotFound(f'Library {name!r} not found')

    def resolve_kind(self, library_id: str) -> LibraryKind:
        return self.find_library(library_id).kind

    ## routing ------------------------------------------------------
    def exporter_for(self, kind: LibraryKind) -> RecordExporter:
        if kind is LibraryKind.MOVIE:
            return MovieExporter(self.fetcher, self.config)
        if kind is LibraryKind.SHOW:
            return ShowExporter(self.fetcher, self.config)
        if kind is LibraryKind.ALBUM:
            if self.config.music_mode == 'tracks':
                return TrackExporter(self.fetcher, self.config)
            return AlbumExporter(self.fetcher, self.config)
        raise UnsupportedLibraryKind(f'Unknown library type: {kind.value!r}')

    def prepare_output(self, output_path: Path) -> None:
        """
        Applies the overwrite policy, then makes sure the parent directory exists.
        """
        if output_path.exists():
            if not self.config.force:
                raise AlreadyExists(f'Output file {output_path} already exists. Use -f to force overwrite.')
            log.warning(f'Overwriting existing file {output_path}')
            output_path.unlink()
        output_path.parent.mkdir(parents=True, exist_ok=True)

    def export_library(self, library_id: str, output_path: Path) -> ExportResult:
        """
        Exports one library by id.
        Raises LibraryNotFound, UnsupportedLibraryKind, AlreadyExists, or FetchError; an unsupported
          kind is detected before the output file is touched.
        """
        output_path = Path(output_path)
        library: Library = self.find_library(library_id)
        log.info(f'Exporting library ID {library.id} (type: {library.server_type}) to {output_path}')
        if library.kind is LibraryKind.UNKNOWN:
            raise UnsupportedLibraryKind(
                f'Unknown library type: {library.server_type!r} for library ID: {library.id}'
            )
        exporter: RecordExporter = self.exporter_for(library.kind)
        self.prepare_output(output_path)
        result: ExportResult = exporter.export(library.id, output_path)
        if result.status is not ExportStatus.NO_DATA:
            log.info(f'Successfully exported to {output_path}')
            if self.config.debug:
                with output_path.open('r', encoding='utf-8') as fh:
                    head: list[str] = [line.rstrip('\n') for _, line in zip(range(5), fh)]
                log.debug('First few lines of export:\n' + '\n'.join(head))
        return result

    def export_all(self, output_dir: Path) -> list[LibraryOutcome]:
        """
        Exports every library, one after another, to `{output_dir}/{name}.csv`.
        A failure ends only that library's export.
        """
        output_dir = Path(output_dir)
        log.info('Exporting all libraries...')
        outcomes: list[LibraryOutcome] = []
        for library in self.get_libraries():
            output_path: Path = output_dir / library.default_filename()
            error: ExporterError
            try:
                result: ExportResult = self.export_library(library.id, output_path)
            except ExporterError as exc:
                error = exc
            except OSError as exc:
                error = ExportIOError(f'cannot write {output_path}: {exc}', exc)
            else:
                outcomes.append(LibraryOutcome(library=library, output_path=output_path, result=result))
                continue
            log.error(f'Export of library {library.name!r} failed: {error}')
            outcomes.append(LibraryOutcome(library=library, output_path=output_path, error=error))
        return outcomes
