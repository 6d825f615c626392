# oai_harvester/oai_client.py
# This module handles all OAI-PMH protocol communication.

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping, Optional
from urllib.parse import quote, urlparse

import requests

from .config import HarvestConfig
from .errors import (
    LISTRECORDS_PROCESSING_ERROR,
    EmptyResponseError,
    HttpStatusError,
    ValidationError,
    classify,
)
from .parser import as_list, extract_resumption_token, oai_root, parse_oai_xml
from .utils import delay, get_session

_OAI_SUFFIX = re.compile(r"/oai$")
_XML_ENCODING = re.compile(rb"""\s*<\?xml[^>]*?encoding=["']([A-Za-z][A-Za-z0-9._-]*)["']""")


def _endpoint(base_url: str) -> str:
    # "https://x.org", "https://x.org/" and "https://x.org/oai/" share one endpoint
    return _OAI_SUFFIX.sub("", base_url.rstrip("/")) + "/oai"


def build_identify_url(base_url: str) -> str:
    return f"{_endpoint(base_url)}?verb=Identify"


def build_list_records_url(base_url: str, metadata_prefix: str = "oai_dc") -> str:
    return f"{_endpoint(base_url)}?verb=ListRecords&metadataPrefix={quote(metadata_prefix, safe='')}"


def build_resumption_token_url(base_url: str, token: str) -> str:
    return f"{_endpoint(base_url)}?verb=ListRecords&resumptionToken={quote(token, safe='')}"


def validate_oai_url(url: Any) -> None:
    """Raise ValidationError unless url is an absolute http(s) URL."""
    if not url or not isinstance(url, str) or not url.strip():
        raise ValidationError("OAI URL is required")
    try:
        parsed = urlparse(url)
    except ValueError:
        raise ValidationError(f"Invalid OAI URL format: {url}") from None
    if not parsed.scheme or not parsed.netloc:
        raise ValidationError(f"Invalid OAI URL format: {url}")
    if parsed.scheme not in ("http", "https"):
        raise ValidationError("OAI URL must use HTTP or HTTPS protocol")


@dataclass(frozen=True)
class Page:
    """One ListRecords response."""

    page_number: int
    raw_xml: str
    record_count: int
    resumption_token: Optional[str]
    total_records_processed: int


@dataclass
class FetchResult:
    success: bool
    data: Optional[str] = None
    url: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class HarvestResult:
    success: bool
    page_count: int = 0
    total_records_processed: int = 0
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    # True when max_pages stopped pagination while a token was still pending
    truncated: bool = False


class ListRecordsPager:
    """
    Lazy, single-use sequence of ListRecords pages for one endpoint.

    Pages are fetched strictly in order, one request at a time, following the
    resumption token of each page. Iteration ends when a page carries no new
    token, when the response has no ListRecords element, or when the page cap
    is reached. Fetch errors propagate out of the iterator.
    """

    def __init__(self, client: "HarvestClient", base_url: str):
        validate_oai_url(base_url)
        self.client = client
        self.base_url = base_url
        self.page_count = 0
        self.total_records_processed = 0
        self.truncated = False
        self._started = False

    def __iter__(self) -> Iterator[Page]:
        if self._started:
            raise RuntimeError("ListRecords pages can only be iterated once")
        self._started = True
        return self._pages()

    def _pages(self) -> Iterator[Page]:
        client = self.client
        log = client.logger
        resumption_token = None

        while True:
            self.page_count += 1
            log.info("Fetching ListRecords page %d", self.page_count)

            if resumption_token is None:
                request_url = build_list_records_url(self.base_url, client.config.metadata_prefix)
            else:
                request_url = build_resumption_token_url(self.base_url, resumption_token)

            raw_xml = client.fetch(request_url)
            root = oai_root(parse_oai_xml(raw_xml))

            if "ListRecords" not in root:
                log.info("No ListRecords found in OAI response, stopping pagination")
                return

            list_records = root["ListRecords"]
            records_in_page = 0
            next_token = None
            if isinstance(list_records, Mapping):
                records_in_page = len(as_list(list_records.get("record")))
                next_token = extract_resumption_token(list_records)
            self.total_records_processed += records_in_page

            yield Page(
                page_number=self.page_count,
                raw_xml=raw_xml,
                record_count=records_in_page,
                resumption_token=next_token,
                total_records_processed=self.total_records_processed,
            )
            log.info(
                "Processed page %d with %d records. Total processed: %d",
                self.page_count, records_in_page, self.total_records_processed,
            )

            if not next_token or next_token == resumption_token:
                log.info("No new resumption token found, pagination complete")
                return

            if self.page_count >= client.config.max_pages:
                self.truncated = True
                log.warning(
                    "Reached max-pages limit (%d) with a resumption token pending. Stopping early.",
                    client.config.max_pages,
                )
                return

            resumption_token = next_token
            log.debug("Found resumption token %s, continuing pagination", resumption_token)
            client.sleep(client.config.page_delay)


def decode_body(response: requests.Response) -> str:
    """
    Decodes a response body as text.

    A charset in the Content-Type header wins. Without one requests would
    assume ISO-8859-1 for text/xml, so the XML declaration is used instead,
    and UTF-8 when the declaration names no encoding either.
    """
    content_type = response.headers.get("Content-Type", "")
    if "charset=" not in content_type.lower():
        match = _XML_ENCODING.match(response.content)
        response.encoding = match.group(1).decode("ascii") if match else "utf-8"
    return response.text


class HarvestClient:
    """Issues OAI-PMH Identify and ListRecords requests against one repository at a time."""

    def __init__(
        self,
        config: Optional[HarvestConfig] = None,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], None] = delay,
    ):
        self.config = config or HarvestConfig()
        self.session = session or get_session(self.config)
        self.logger = logger or logging.getLogger(__name__)
        self.sleep = sleep

    def fetch(self, url: str) -> str:
        """GET an OAI-PMH URL and return the body, raising on non-200 or empty responses."""
        self.logger.debug("Making request to: %s", url)
        response = self.session.get(url, timeout=self.config.timeout)
        if response.status_code != 200:
            raise HttpStatusError(
                f"HTTP error {response.status_code}: {response.reason}",
                response=response,
            )
        if not response.content:
            raise EmptyResponseError("Empty response received from OAI endpoint")
        text = decode_body(response)
        self.logger.debug("Received response with %d characters", len(text))
        return text

    def identify(self, base_url: str) -> FetchResult:
        """
        Fetches the repository's Identify response.

        Args:
            base_url: The OAI endpoint URL as supplied by the caller.

        Returns:
            A FetchResult with the raw XML on success. On failure the result
            carries the classified error code and the caller's original URL.
        """
        try:
            validate_oai_url(base_url)
            identify_url = build_identify_url(base_url)
            self.logger.info("Making Identify request to: %s", identify_url)
            data = self.fetch(identify_url)
        except Exception as e:
            self.logger.error("Failed to process Identify request for URL %s: %s", base_url, e)
            return FetchResult(
                success=False,
                url=base_url,
                error_code=classify(e),
                error_message=str(e),
            )
        return FetchResult(success=True, data=data, url=identify_url)

    def iter_pages(self, base_url: str) -> ListRecordsPager:
        """Validate base_url and return a lazy pager over its ListRecords pages."""
        return ListRecordsPager(self, base_url)

    def list_records(self, base_url: str, on_page: Callable[[Page], Any]) -> HarvestResult:
        """
        Harvests every ListRecords page and hands each one to on_page.

        on_page is called synchronously. If it raises, the whole harvest
        fails with LISTRECORDS_PROCESSING_ERROR; pages it already handled are
        not undone.

        Args:
            base_url: The OAI endpoint URL.
            on_page: Callback receiving each Page in order.

        Returns:
            A HarvestResult with page and record counts, or the failure.
        """
        try:
            pager = self.iter_pages(base_url)
            pages = iter(pager)
        except Exception as e:
            return self._failed(base_url, classify(e), e)

        while True:
            try:
                page = next(pages)
            except StopIteration:
                break
            except Exception as e:
                return self._failed(base_url, classify(e), e)

            try:
                on_page(page)
            except Exception as e:
                return self._failed(base_url, LISTRECORDS_PROCESSING_ERROR, e)

        self.logger.info(
            "ListRecords processing completed. Total pages: %d, Total records processed: %d",
            pager.page_count, pager.total_records_processed,
        )
        return HarvestResult(
            success=True,
            page_count=pager.page_count,
            total_records_processed=pager.total_records_processed,
            truncated=pager.truncated,
        )

    def _failed(self, base_url: str, error_code: str, error: Exception) -> HarvestResult:
        self.logger.error("Failed to process ListRecords for URL %s: %s", base_url, error)
        return HarvestResult(
            success=False,
            error_code=error_code,
            error_message=str(error),
        )
