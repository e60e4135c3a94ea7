"""
In-memory stand-in for a Plex server, served to httpx through a MockTransport.

Honors `X-Plex-Container-Start` / `X-Plex-Container-Size` like the real server, records every request,
  and can be told to fail specific pages a given number of times.
"""

import re
import xml.etree.ElementTree as ET
from pathlib import Path

import httpx

from exporter_config import ExporterConfig

TEST_DATA_DIR: Path = Path(__file__).parent / 'test_data'
COLLECTION_PATH_RE: re.Pattern[str] = re.compile(r'/library/sections/([^/]+)/all')


def load_fixture(name: str) -> str:
    return (TEST_DATA_DIR / name).read_text(encoding='utf-8')


def fixture_elements(name: str) -> list[str]:
    """
    Returns the serialized child elements of a fixture's MediaContainer.
    """
    root: ET.Element = ET.fromstring(load_fixture(name))
    return [ET.tostring(child, encoding='unicode') for child in root]


def movie_element(number: int) -> str:
    return f'<Video ratingKey="{number}" type="movie" title="Movie {number}" year="2000" duration="6000000" />'


def make_config(**overrides: object) -> ExporterConfig:
    """
    Test config: quiet (no progress bars) and no retry delay unless asked for.
    """
    values: dict[str, object] = {
        'plex_url': 'http://plex.test:32400',
        'plex_token': 'test-token',
        'retry_delay': 0.0,
        'quiet': True,
    }
    values.update(overrides)
    return ExporterConfig(**values)  # type: ignore[arg-type]


class FakePlexServer:
    def __init__(self, sections_xml: str | None = None) -> None:
        self.sections_xml: str = sections_xml if sections_xml is not None else load_fixture('library_sections.xml')
        self.collections: dict[tuple[str, str], list[str]] = {}
        self.page_failures: dict[int, int] = {}
        self.probe_failures: int = 0
        self.sections_failures: int = 0
        self.omit_total_size: bool = False
        self.collection_body: str | None = None
        self.requests: list[httpx.Request] = []

    ## setup ------------------------------------------------------
    def add_collection(self, library_id: str, plex_type: int, elements: list[str]) -> None:
        self.collections[(library_id, str(plex_type))] = list(elements)

    def add_fixture_collection(self, library_id: str, plex_type: int, fixture_name: str) -> None:
        self.add_collection(library_id, plex_type, fixture_elements(fixture_name))

    def fail_page(self, offset: int, times: int) -> None:
        self.page_failures[offset] = times

    ## inspection -------------------------------------------------
    def page_requests(self) -> list[httpx.Request]:
        return [
            req
            for req in self.requests
            if COLLECTION_PATH_RE.fullmatch(req.url.path) and req.url.params.get('X-Plex-Container-Size') != '0'
        ]

    def page_offsets(self) -> list[int]:
        return [int(req.url.params['X-Plex-Container-Start']) for req in self.page_requests()]

    ## serving ----------------------------------------------------
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path: str = request.url.path
        if path == '/library/sections':
            if self.sections_failures > 0:
                self.sections_failures -= 1
                return httpx.Response(503, text='unavailable')
            return httpx.Response(200, text=self.sections_xml)

        match: re.Match[str] | None = COLLECTION_PATH_RE.fullmatch(path)
        if match is None:
            return httpx.Response(404, text='not found')

        if self.collection_body is not None:
            return httpx.Response(200, text=self.collection_body, headers={'Content-Type': 'application/xml'})

        items: list[str] = self.collections.get((match.group(1), request.url.params.get('type', '')), [])
        start: int = int(request.url.params.get('X-Plex-Container-Start', '0'))
        size: int = int(request.url.params.get('X-Plex-Container-Size', str(len(items))))

        if size == 0 and self.probe_failures > 0:
            self.probe_failures -= 1
            return httpx.Response(500, text='probe failed')
        if size > 0 and self.page_failures.get(start, 0) > 0:
            self.page_failures[start] -= 1
            return httpx.Response(500, text='page failed')

        page: list[str] = items[start : start + size]
        total_attr: str = '' if self.omit_total_size else f' totalSize="{len(items)}"'
        body: str = f'<MediaContainer size="{len(page)}"{total_attr} offset="{start}">' + ''.join(page) + '</MediaContainer>'
        return httpx.Response(200, text=body, headers={'Content-Type': 'application/xml'})
