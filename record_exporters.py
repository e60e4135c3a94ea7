"""
Writes one Plex library's records to a CSV file.

One exporter class per record variant (movie, show, album, track). Each one:
- writes its fixed header row
- fetches the library's "all items" collection, filtered by Plex `type`
- extracts, normalizes, and appends one row per record element, in server order
- optionally re-writes the file with embedded line-breaks removed
- counts the exported rows and classifies the result (complete / partial / no-data)
"""

import csv
import enum
import logging
import os
import sys
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from tqdm import tqdm

from exporter_config import ExporterConfig
from plex_fetcher import PaginatedFetcher
from plex_markup import LIST_SEPARATOR, MarkupFieldExtractor, count_elements
from value_formatting import (
    decode_entities,
    escape_csv_field,
    format_count,
    format_hours_minutes,
    format_integer,
    format_minutes,
    format_rating,
    format_size,
    format_timestamp,
    format_track_duration,
)

log = logging.getLogger(__name__)

## plex `type` discriminators for `/library/sections/{id}/all`
PLEX_TYPE_MOVIE: int = 1
PLEX_TYPE_SHOW: int = 2
PLEX_TYPE_ALBUM: int = 9
PLEX_TYPE_TRACK: int = 10


class ExportStatus(enum.Enum):
    COMPLETE = 'complete'
    PARTIAL = 'partial'
    NO_DATA = 'no_data'


@dataclass(frozen=True)
class ExportResult:
    library_id: str
    output_path: Path
    status: ExportStatus
    exported_count: int
    discovered_total: int
    skipped_count: int = 0


class RecordExporter:
    """
    Shared export flow; subclasses supply the columns and `extract_fields()`.

    Every column not listed in `integer_columns` is written wrapped in double-quotes,
      with embedded quotes doubled. Integer columns are written bare.
    """

    label: str = 'records'
    plex_type: int = 0
    record_tag: str = ''
    columns: tuple[str, ...] = ()
    integer_columns: frozenset[str] = frozenset()
    title_column: str = 'title'

    def __init__(self, fetcher: PaginatedFetcher, config: ExporterConfig) -> None:
        self.fetcher: PaginatedFetcher = fetcher
        self.config: ExporterConfig = config
        self.fields: MarkupFieldExtractor = MarkupFieldExtractor()

    ## field helpers ------------------------------------------------
    def text(self, element: ET.Element, name: str) -> str:
        return decode_entities(self.fields.attribute(element, name))

    def text_list(self, element: ET.Element, child_tag: str) -> str:
        """
        Decodes each tag separately, then joins; the join happens on structural values only.
        """
        return LIST_SEPARATOR.join(decode_entities(value) for value in self.fields.tags(element, child_tag))

    def timestamp(self, element: ET.Element, name: str) -> str:
        return format_timestamp(self.fields.attribute(element, name), self.config.date_format)

    def extract_fields(self, element: ET.Element) -> dict[str, str]:
        raise NotImplementedError

    ## row formatting -----------------------------------------------
    def header_line(self) -> str:
        return ','.join(self.columns)

    def format_row(self, values: list[str]) -> str:
        """
        Assembles one CSV line from already-decoded values, in column order.
        """
        cells: list[str] = []
        for column, value in zip(self.columns, values):
            if column in self.integer_columns:
                cells.append(value)
            else:
                cells.append(f'"{escape_csv_field(value)}"')
        return ','.join(cells)

    def row_values(self, fields: dict[str, str]) -> list[str]:
        return [fields.get(column, '') for column in self.columns]

    ## export flow --------------------------------------------------
    def progress_stream(self) -> TextIO:
        return sys.stderr if self.config.progress_to_stderr else sys.stdout

    def export(self, library_id: str, output_path: Path) -> ExportResult:
        """
        Exports one library to `output_path` (truncating it).
        Raises FetchError if the collection can't be fetched; the header-only file is left behind.
        """
        output_path = Path(output_path)
        ## header -----------------------------------------------------
        with output_path.open('w', encoding='utf-8', newline='') as fh:
            fh.write(self.header_line() + '\n')
        log.info(f'Exporting {self.label} from library {library_id} to {output_path}')

        ## fetch ------------------------------------------------------
        document: ET.Element = self.fetcher.fetch(
            f'/library/sections/{library_id}/all', {'type': self.plex_type}
        )
        discovered_total: int = int(document.get('totalSize') or 0)
        element_count: int = count_elements(document, self.record_tag)
        log.debug(f'{element_count} <{self.record_tag}> element(s) of {discovered_total} reported')

        ## write ------------------------------------------------------
        skipped: int = self.write_rows(document, output_path, element_count)
        if skipped:
            log.warning(f'Skipped {skipped} {self.label} without a {self.title_column} in library {library_id}')

        ## verify -----------------------------------------------------
        if self.config.clean_newlines:
            self.clean_output(output_path)
        exported: int = self.count_rows(output_path)
        status: ExportStatus = self.classify(exported, discovered_total)
        if status is ExportStatus.NO_DATA:
            log.warning(f'No {self.label} were exported to {output_path}')
        elif status is ExportStatus.PARTIAL:
            log.warning(f'Exported {exported} of {discovered_total} {self.label} to {output_path}')
        else:
            log.info(f'Exported {exported} {self.label} to {output_path}')
        return ExportResult(
            library_id=library_id,
            output_path=output_path,
            status=status,
            exported_count=exported,
            discovered_total=discovered_total,
            skipped_count=skipped,
        )

    def write_rows(self, document: ET.Element, output_path: Path, element_count: int) -> int:
        """
        Appends one row per record element, in document order. Returns the number skipped for a missing title.
        """
        skipped: int = 0
        elements: list[ET.Element] = document.findall(self.record_tag)
        with output_path.open('a', encoding='utf-8', newline='') as fh:
            for element in tqdm(
                elements,
                total=element_count,
                desc=f'Processing {self.label}',
                unit='item',
                file=self.progress_stream(),
                disable=self.config.quiet,
            ):
                fields: dict[str, str] = self.extract_fields(element)
                if not fields.get(self.title_column, '').strip():
                    skipped += 1
                    continue
                fh.write(self.format_row(self.row_values(fields)) + '\n')
        return skipped

    def clean_output(self, output_path: Path) -> None:
        """
        Re-writes the file so every record is one physical line: line-breaks inside fields become
          spaces, and rows whose fields are all empty are dropped.
        """
        tmp_path: Path = output_path.with_name(f'{output_path.name}.tmp')
        with output_path.open('r', encoding='utf-8', newline='') as src, tmp_path.open(
            'w', encoding='utf-8', newline=''
        ) as dst:
            reader = csv.reader(src)
            header: list[str] | None = next(reader, None)
            if header is not None:
                dst.write(','.join(header) + '\n')
            for row in reader:
                cleaned: list[str] = [' '.join(value.splitlines()) for value in row]
                if not any(value.strip() for value in cleaned):
                    continue
                dst.write(self.format_row(cleaned) + '\n')
        os.replace(tmp_path, output_path)

    @staticmethod
    def count_rows(output_path: Path) -> int:
        """
        Data rows in the file (header excluded).
        Counts CSV records, not physical lines, so a quoted field with an embedded line-break (cleanup off)
          still counts as one row.
        """
        with output_path.open('r', encoding='utf-8', newline='') as fh:
            total: int = sum(1 for _row in csv.reader(fh))
        return max(total - 1, 0)

    @staticmethod
    def classify(exported: int, discovered_total: int) -> ExportStatus:
        if exported == 0:
            return ExportStatus.NO_DATA
        if exported < discovered_total:
            return ExportStatus.PARTIAL
        return ExportStatus.COMPLETE


class MovieExporter(RecordExporter):
    label = 'movies'
    plex_type = PLEX_TYPE_MOVIE
    record_tag = 'Video'
    columns = (
        'title',
        'year',
        'duration_minutes',
        'studio',
        'content_rating',
        'summary',
        'critic_rating_pct',
        'audience_rating_pct',
        'tagline',
        'release_date',
        'added_at',
        'updated_at',
        'resolution',
        'audio_channels',
        'audio_codec',
        'video_codec',
        'container',
        'frame_rate',
        'size_human',
        'genres',
        'countries',
        'directors',
        'writers',
        'actors',
    )
    integer_columns = frozenset({'year', 'duration_minutes'})

    def extract_fields(self, element: ET.Element) -> dict[str, str]:
        media = self.fields.media_attribute
        return {
            'title': self.text(element, 'title'),
            'year': format_integer(self.fields.attribute(element, 'year')),
            'duration_minutes': format_minutes(self.fields.attribute(element, 'duration')),
            'studio': self.text(element, 'studio'),
            'content_rating': self.text(element, 'contentRating'),
            'summary': self.text(element, 'summary'),
            'critic_rating_pct': format_rating(self.fields.attribute(element, 'rating')),
            'audience_rating_pct': format_rating(self.fields.attribute(element, 'audienceRating')),
            'tagline': self.text(element, 'tagline'),
            'release_date': self.fields.attribute(element, 'originallyAvailableAt'),
            'added_at': self.timestamp(element, 'addedAt'),
            'updated_at': self.timestamp(element, 'updatedAt'),
            'resolution': media(element, 'videoResolution'),
            'audio_channels': media(element, 'audioChannels'),
            'audio_codec': media(element, 'audioCodec'),
            'video_codec': media(element, 'videoCodec'),
            'container': media(element, 'container'),
            'frame_rate': media(element, 'videoFrameRate'),
            'size_human': format_size(self.fields.part_attribute(element, 'size')),
            'genres': self.text_list(element, 'Genre'),
            'countries': self.text_list(element, 'Country'),
            'directors': self.text_list(element, 'Director'),
            'writers': self.text_list(element, 'Writer'),
            'actors': self.text_list(element, 'Role'),
        }


class ShowExporter(RecordExporter):
    label = 'TV shows'
    plex_type = PLEX_TYPE_SHOW
    record_tag = 'Directory'
    columns = (
        'title',
        'episode_count',
        'season_count',
        'studio',
        'content_rating',
        'summary',
        'audience_rating_pct',
        'year',
        'duration',
        'release_date',
        'added_at',
        'updated_at',
        'genres',
        'countries',
        'actors',
    )
    integer_columns = frozenset({'episode_count', 'season_count', 'year'})

    def extract_fields(self, element: ET.Element) -> dict[str, str]:
        return {
            'title': self.text(element, 'title'),
            'episode_count': format_count(self.fields.attribute(element, 'leafCount')),
            'season_count': format_count(self.fields.attribute(element, 'childCount')),
            'studio': self.text(element, 'studio'),
            'content_rating': self.text(element, 'contentRating'),
            'summary': self.text(element, 'summary'),
            'audience_rating_pct': format_rating(self.fields.attribute(element, 'audienceRating')),
            'year': format_integer(self.fields.attribute(element, 'year')),
            'duration': format_hours_minutes(self.fields.attribute(element, 'duration')),
            'release_date': self.fields.attribute(element, 'originallyAvailableAt'),
            'added_at': self.timestamp(element, 'addedAt'),
            'updated_at': self.timestamp(element, 'updatedAt'),
            'genres': self.text_list(element, 'Genre'),
            'countries': self.text_list(element, 'Country'),
            'actors': self.text_list(element, 'Role'),
        }


class AlbumExporter(RecordExporter):
    label = 'albums'
    plex_type = PLEX_TYPE_ALBUM
    record_tag = 'Directory'
    columns = ('artist', 'album', 'year', 'genres', 'studio', 'added_at', 'updated_at')
    integer_columns = frozenset({'year'})
    title_column = 'album'

    def extract_fields(self, element: ET.Element) -> dict[str, str]:
        return {
            'artist': self.text(element, 'parentTitle'),
            'album': self.text(element, 'title'),
            'year': format_integer(self.fields.attribute(element, 'year')),
            'genres': self.text_list(element, 'Genre'),
            'studio': self.text(element, 'studio'),
            'added_at': self.timestamp(element, 'addedAt'),
            'updated_at': self.timestamp(element, 'updatedAt'),
        }


class TrackExporter(RecordExporter):
    """
    Per-track music export; chosen for artist libraries when the music mode is `tracks`.
    """

    label = 'tracks'
    plex_type = PLEX_TYPE_TRACK
    record_tag = 'Track'
    columns = ('artist', 'album', 'track', 'track_number', 'disc_number', 'duration')
    integer_columns = frozenset({'track_number', 'disc_number'})
    title_column = 'track'

    def extract_fields(self, element: ET.Element) -> dict[str, str]:
        return {
            'artist': self.text(element, 'grandparentTitle'),
            'album': self.text(element, 'parentTitle'),
            'track': self.text(element, 'title'),
            'track_number': format_integer(self.fields.attribute(element, 'index')),
            'disc_number': format_integer(self.fields.attribute(element, 'parentIndex')),
            'duration': format_track_duration(self.fields.attribute(element, 'duration')),
        }
