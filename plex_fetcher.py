"""
Fetches collections from a Plex Media Server, one fixed-size page at a time.

It's server-friendly: requests are strictly sequential, with a short pause between pages
  and a fixed delay between retries.

Flow for one collection:
- probe with a zero-size page to learn `totalSize`
- request pages of 50 at offsets 0, 50, 100...; each page gets up to 3 attempts
- append each page's record elements to a single `MediaContainer`
"""

import logging
import math
import sys
import time
import xml.etree.ElementTree as ET
from collections.abc import Callable
from dataclasses import dataclass
from typing import TextIO, TypeVar

import httpx
from defusedxml.ElementTree import ParseError
from tqdm import tqdm

from exporter_config import SCRIPT_VERSION, ExporterConfig
from exporter_errors import FetchError, PageFailed, SizeUnavailable
from plex_markup import CONTAINER_TAG, parse_container

log = logging.getLogger(__name__)

PAGE_SIZE: int = 50
PAGE_PAUSE_SECONDS: float = 0.5
RETRYABLE_ERRORS: tuple[type[Exception], ...] = (httpx.HTTPError, ParseError)

T = TypeVar('T')


def _sleep(seconds: float) -> None:
    """
    Sleeps for given seconds; centralizes sleep for easier tweaking (and patching in tests).
    """
    time.sleep(seconds)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Fixed-delay retry: `max_attempts` tries, `delay_s` between them, no backoff growth.
    Used for the size-probe, every page, and single-document requests.
    """

    max_attempts: int = 3
    delay_s: float = 5.0

    def call(self, operation: Callable[[], T], description: str) -> T:
        """
        Runs `operation` until it succeeds or attempts run out; then re-raises the last error.
        Only network/HTTP/markup errors are retried; anything else propagates immediately.
        """
        last_exc: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation()
            except RETRYABLE_ERRORS as exc:
                last_exc = exc
                if attempt < self.max_attempts:
                    log.warning(
                        f'{description} failed (attempt {attempt}/{self.max_attempts}): {exc}. Retrying in {self.delay_s:g}s...'
                    )
                    _sleep(self.delay_s)
        log.error(f'{description} failed after {self.max_attempts} attempts')
        assert last_exc is not None
        raise last_exc


class PlexApiClient:
    """
    Encapsulates HTTP GETs against the Plex server.
    - Sends the token, xml accept-header, and client-identification headers on every request.
    - Treats any 4xx/5xx status as an error.
    - Parses bodies into `MediaContainer` elements.
    """

    def __init__(self, config: ExporterConfig, client: httpx.Client) -> None:
        self.config: ExporterConfig = config
        self.client: httpx.Client = client

    @staticmethod
    def build_headers(config: ExporterConfig) -> dict[str, str]:
        return {
            'X-Plex-Token': config.plex_token,
            'Accept': 'application/xml',
            'X-Plex-Client-Identifier': f'media-library-exporter-{SCRIPT_VERSION}',
            'X-Plex-Product': 'Media Library Exporter (for Plex)',
            'X-Plex-Version': SCRIPT_VERSION,
        }

    @classmethod
    def build_http_client(cls, config: ExporterConfig, transport: httpx.BaseTransport | None = None) -> httpx.Client:
        """
        Creates the shared httpx client (headers, timeouts, limits).
        """
        timeout: httpx.Timeout = httpx.Timeout(connect=30.0, read=60.0, write=60.0, pool=30.0)
        limits: httpx.Limits = httpx.Limits(max_keepalive_connections=5, max_connections=5)
        return httpx.Client(
            base_url=config.plex_url,
            headers=cls.build_headers(config),
            timeout=timeout,
            limits=limits,
            transport=transport,
            follow_redirects=True,
        )

    def get_xml(self, path: str, params: dict[str, str | int] | None = None) -> ET.Element:
        log.debug(f'GET ``{path}`` params ``{params}``')
        resp: httpx.Response = self.client.get(path, params=params)
        if resp.status_code == 401:
            raise httpx.HTTPStatusError('invalid Plex token (401)', request=resp.request, response=resp)
        resp.raise_for_status()
        return parse_container(resp.content)


class PaginatedFetcher:
    """
    Drives a Plex collection endpoint page by page and reassembles one logical document.
    - Probes `totalSize` with a zero-size request.
    - Requests `ceil(total / page_size)` pages, sequentially, pausing between them.
    - Discards everything fetched so far if any page exhausts its retries.
    - Reports per-page progress (unless quiet) on stdout or stderr.
    """

    def __init__(
        self,
        api: PlexApiClient,
        config: ExporterConfig,
        *,
        page_size: int = PAGE_SIZE,
        page_pause_s: float = PAGE_PAUSE_SECONDS,
    ) -> None:
        self.api: PlexApiClient = api
        self.config: ExporterConfig = config
        self.page_size: int = page_size
        self.page_pause_s: float = page_pause_s
        self.retry: RetryPolicy = RetryPolicy(max_attempts=config.retry_count, delay_s=config.retry_delay)

    @staticmethod
    def page_count(total_size: int, page_size: int = PAGE_SIZE) -> int:
        if total_size <= 0:
            return 0
        return math.ceil(total_size / page_size)

    def page_offsets(self, total_size: int) -> list[int]:
        return list(range(0, max(total_size, 0), self.page_size))

    def get_document(self, path: str, params: dict[str, str | int] | None = None) -> ET.Element:
        """
        Single non-paginated request (eg `/library/sections`), with the same retry policy.
        """
        try:
            return self.retry.call(lambda: self.api.get_xml(path, params), f'API request {path}')
        except RETRYABLE_ERRORS as exc:
            raise FetchError(f'request to {path} failed: {exc}') from exc

    def probe_total_size(self, path: str, params: dict[str, str | int] | None = None) -> int:
        probe_params: dict[str, str | int] = {
            **(params or {}),
            'X-Plex-Container-Start': 0,
            'X-Plex-Container-Size': 0,
        }
        try:
            root: ET.Element = self.retry.call(lambda: self.api.get_xml(path, probe_params), f'size probe {path}')
        except RETRYABLE_ERRORS as exc:
            raise SizeUnavailable(f'size probe for {path} failed: {exc}') from exc
        raw_total: str | None = root.get('totalSize')
        try:
            total: int = int(raw_total)  # type: ignore[arg-type]
        except (TypeError, ValueError) as exc:
            raise SizeUnavailable(f'size probe for {path} returned no usable totalSize ({raw_total!r})') from exc
        if total < 0:
            raise SizeUnavailable(f'size probe for {path} returned a negative totalSize ({total})')
        log.debug(f'totalSize for {path}: {total}')
        return total

    def fetch_page(self, path: str, start: int, params: dict[str, str | int] | None = None) -> list[ET.Element]:
        """
        Returns the record elements of one page (the container itself is dropped).
        """
        page_params: dict[str, str | int] = {
            **(params or {}),
            'X-Plex-Container-Start': start,
            'X-Plex-Container-Size': self.page_size,
        }
        try:
            root: ET.Element = self.retry.call(
                lambda: self.api.get_xml(path, page_params), f'page request {path} (offset {start})'
            )
        except RETRYABLE_ERRORS as exc:
            raise PageFailed(start, exc) from exc
        return list(root)

    def fetch(
        self, path: str, params: dict[str, str | int] | None = None, *, progress_to_stderr: bool | None = None
    ) -> ET.Element:
        """
        Fetches the whole collection at `path` into one `MediaContainer`.
        Raises SizeUnavailable or PageFailed; never returns a partial document.
        """
        total: int = self.probe_total_size(path, params)
        offsets: list[int] = self.page_offsets(total)
        log.info(f'Fetching {total} item(s) from {path} in {len(offsets)} page(s)')

        use_stderr: bool = self.config.progress_to_stderr if progress_to_stderr is None else progress_to_stderr
        stream: TextIO = sys.stderr if use_stderr else sys.stdout

        document: ET.Element = ET.Element(CONTAINER_TAG)
        with tqdm(total=len(offsets), desc='Fetching pages', unit='page', file=stream, disable=self.config.quiet) as bar:
            for index, start in enumerate(offsets):
                if index > 0:
                    _sleep(self.page_pause_s)
                document.extend(self.fetch_page(path, start, params))
                bar.update(1)

        document.set('totalSize', str(total))
        document.set('size', str(len(document)))
        return document
