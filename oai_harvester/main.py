# oai_harvester/main.py
# Main entry point for the OAI-PMH harvester.

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

import jsonlines

from .batcher import BatchAssembler
from .config import HarvestConfig, StorageConfig
from .errors import (
    IDENTIFY_PROCESSING_ERROR,
    LISTRECORDS_PROCESSING_ERROR,
    PAGE_PROCESSING_FAILED,
)
from .oai_client import HarvestClient, Page
from .parser import parse_identify_xml, parse_list_records_xml
from .publisher import JsonlMessagePublisher
from .uploader import HubRawStore, LocalRawStore, StoredFile
from .utils import utc_timestamp

logger = logging.getLogger(__name__)

MESSAGE_SOURCE = "scraping-service"
DEFAULT_OUTPUT = "messages.jsonl"


class RawStore(Protocol):
    def save(self, content: Optional[str], label: str, source_url: str) -> StoredFile: ...


class MessagePublisher(Protocol):
    def send(self, message: Dict[str, Any]) -> str: ...


@dataclass(frozen=True)
class HarvestRequest:
    base_url: str
    journal_key: str
    message_id: Optional[str] = None

    @classmethod
    def from_work_item(cls, item: Mapping[str, Any], message_id: Optional[str] = None) -> Optional["HarvestRequest"]:
        """Build a request from a ``{url, journal_key}`` work item, or None if a field is missing."""
        url = item.get("url")
        journal_key = item.get("journal_key")
        if not url or not journal_key:
            return None
        return cls(base_url=url, journal_key=journal_key, message_id=message_id)


def _file_fields(stored: StoredFile) -> Dict[str, Any]:
    return {
        "s3Url": stored.url,
        "s3Key": stored.key,
        "s3Path": stored.path,
        "filename": stored.filename,
        "fileSize": stored.size,
        "contentType": stored.content_type,
    }


class Harvester:
    """
    Runs the Identify and ListRecords phases for one journal.

    Phase failures are reported as failure messages instead of being raised.
    Only a failure to deliver such a report escapes, so the caller can retry
    the whole work item.
    """

    def __init__(
        self,
        client: HarvestClient,
        store: RawStore,
        publisher: MessagePublisher,
        batch_size: int = 50,
        logger: Optional[logging.Logger] = None,
    ):
        self.client = client
        self.store = store
        self.publisher = publisher
        self.assembler = BatchAssembler(batch_size)
        self.logger = logger or logging.getLogger(__name__)

    def process(self, request: HarvestRequest) -> None:
        self.run_identify(request)
        self.run_list_records(request)

    def _failure(self, request: HarvestRequest, message_type: str, error_code: Optional[str],
                 error_message: Optional[str], **extra: Any) -> Dict[str, Any]:
        message = {
            "journalKey": request.journal_key,
            "oaiUrl": request.base_url,
            "s3Url": None,
            "s3Key": None,
            "messageType": message_type,
            "source": MESSAGE_SOURCE,
        }
        message.update(extra)
        message.update({
            "success": False,
            "errorCode": error_code,
            "errorMessage": error_message,
            "timestamp": utc_timestamp(),
        })
        return message

    def run_identify(self, request: HarvestRequest) -> None:
        journal_key = request.journal_key
        self.logger.info("Phase 1: Processing Identify request for journal: %s", journal_key)

        try:
            result = self.client.identify(request.base_url)
            if not result.success:
                self.logger.error("Identify phase failed for journal %s: %s", journal_key, result.error_message)
                self.publisher.send(self._failure(
                    request, "Identify", result.error_code, result.error_message,
                ))
                return

            record = parse_identify_xml(result.data, journal_key)
            stored = self.store.save(result.data, f"{journal_key}-identify", request.base_url)
            message = {"journalKey": journal_key, "oaiUrl": request.base_url}
            message.update(_file_fields(stored))
            message.update({
                "messageType": "Identify",
                "source": MESSAGE_SOURCE,
                "success": True,
                "errorCode": None,
                "errorMessage": None,
                "timestamp": utc_timestamp(),
                "data": record,
            })
            self.publisher.send(message)
            self.logger.info("Successfully processed Identify phase for journal: %s", journal_key)
        except Exception as e:
            self.logger.error("Failed to process Identify phase for journal %s: %s", journal_key, e)
            self.publisher.send(self._failure(request, "Identify", IDENTIFY_PROCESSING_ERROR, str(e)))

    def run_list_records(self, request: HarvestRequest) -> None:
        journal_key = request.journal_key
        self.logger.info("Phase 2: Processing ListRecords request for journal: %s", journal_key)

        try:
            result = self.client.list_records(
                request.base_url,
                lambda page: self.handle_page(request, page),
            )
        except Exception as e:
            self.logger.error("Failed to process ListRecords phase for journal %s: %s", journal_key, e)
            self.publisher.send(self._failure(request, "ListRecords", LISTRECORDS_PROCESSING_ERROR, str(e)))
            return

        if not result.success:
            self.logger.error("ListRecords phase failed for journal %s: %s", journal_key, result.error_message)
            self.publisher.send(self._failure(
                request, "ListRecords", result.error_code, result.error_message,
            ))
            return

        self.logger.info(
            "Successfully processed ListRecords phase for journal: %s - %d records across %d pages%s",
            journal_key, result.total_records_processed, result.page_count,
            " (page limit reached)" if result.truncated else "",
        )

    def handle_page(self, request: HarvestRequest, page: Page) -> None:
        """
        Store one ListRecords page and publish its records in batches.

        A page that cannot be stored or parsed is reported with
        PAGE_PROCESSING_FAILED and harvesting moves on to the next page. A
        batch that cannot be sent is logged and the remaining batches are
        still sent.
        """
        journal_key = request.journal_key
        self.logger.info("Processing ListRecords page %d with %d records", page.page_number, page.record_count)

        try:
            stored = self.store.save(
                page.raw_xml,
                f"{journal_key}-listrecords-page-{page.page_number}",
                request.base_url,
            )
            articles = parse_list_records_xml(page.raw_xml, journal_key)
        except Exception as e:
            self.logger.error("Failed to process ListRecords page %d for journal %s: %s",
                              page.page_number, journal_key, e)
            self.publisher.send(self._failure(
                request, "ListRecords", PAGE_PROCESSING_FAILED, str(e),
                pageNumber=page.page_number,
                recordsInPage=page.record_count,
                totalRecordsProcessed=page.total_records_processed,
            ))
            return

        batches = self.assembler.assemble(articles)
        sent = 0
        for batch in batches:
            message = {"journalKey": journal_key, "oaiUrl": request.base_url}
            message.update(_file_fields(stored))
            message.update({
                "messageType": "ArticleBatch",
                "source": MESSAGE_SOURCE,
                "pageNumber": page.page_number,
                "batchNumber": batch.batch_number,
                "totalBatches": batch.total_batches,
                "articlesInBatch": len(batch.records),
                "totalArticlesInPage": len(articles),
                "totalRecordsProcessed": page.total_records_processed,
                "success": True,
                "errorCode": None,
                "errorMessage": None,
                "timestamp": utc_timestamp(),
                "articles": batch.records,
            })
            try:
                self.publisher.send(message)
                sent += 1
            except Exception as e:
                self.logger.error("Failed to send batch %d/%d of page %d for journal %s: %s",
                                  batch.batch_number, batch.total_batches, page.page_number, journal_key, e)

        self.logger.info("Sent %d of %d batches for page %d of journal: %s",
                         sent, len(batches), page.page_number, journal_key)


def _decode_item(item: Mapping[str, Any]) -> Dict[str, Any]:
    # Queue-style items wrap the work item as a JSON string under "body"
    if "body" in item:
        body = item["body"]
        return json.loads(body) if isinstance(body, (str, bytes)) else dict(body)
    return dict(item)


def handle_work_items(items: Iterable[Mapping[str, Any]], harvester: Harvester) -> Dict[str, Any]:
    """
    Harvest every work item in turn.

    Items missing ``url`` or ``journal_key`` are skipped without retry. Items
    whose handling raised are listed under ``batchItemFailures``.
    """
    failures: List[Dict[str, Any]] = []
    for position, item in enumerate(items, start=1):
        message_id = str(item.get("messageId") or position)
        try:
            logger.info("Processing message: %s", message_id)
            request = HarvestRequest.from_work_item(_decode_item(item), message_id)
            if request is None:
                logger.error("Missing url or journal_key in work item %s, skipping", message_id)
                continue
            harvester.process(request)
            logger.info("Successfully processed message: %s", message_id)
        except Exception as e:
            logger.error("Failed to process message %s: %s", message_id, e)
            failures.append({"itemIdentifier": message_id})

    response: Dict[str, Any] = {"statusCode": 200, "body": "SUCCESS"}
    if failures:
        logger.warning("Returning %d batch item failures", len(failures))
        response["batchItemFailures"] = failures
    return response


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _non_negative_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}")
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative, got {number}")
    return number


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Harvest OAI-PMH repositories listed in a work-item file")
    parser.add_argument(
        "work_items",
        help="JSON Lines file with one {\"url\", \"journal_key\"} object per line",
    )
    parser.add_argument(
        "--output",
        default=DEFAULT_OUTPUT,
        help="JSON Lines file outgoing messages are appended to",
    )
    parser.add_argument(
        "--local-store",
        metavar="DIR",
        help="Keep raw XML in this directory even if HF_DATASET_REPO is set",
    )
    parser.add_argument("--max-pages", type=_positive_int, help="Maximum number of ListRecords pages per journal")
    parser.add_argument("--page-delay", type=_non_negative_float, help="Seconds to wait between page requests")
    parser.add_argument("--batch-size", type=_positive_int, help="Maximum number of articles per message")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("HARVEST_LOG_LEVEL", "INFO").upper(),
        choices=LOG_LEVELS,
        help="Logging verbosity (default: HARVEST_LOG_LEVEL or INFO)",
    )
    args = parser.parse_args(argv)
    # argparse does not check defaults against choices
    if args.log_level not in LOG_LEVELS:
        parser.error(f"invalid HARVEST_LOG_LEVEL {args.log_level!r} (choose from {', '.join(LOG_LEVELS)})")
    return args


def build_store(storage: StorageConfig, local_dir: Optional[str] = None) -> RawStore:
    if storage.dataset_repo and not local_dir:
        store = HubRawStore(storage.dataset_repo, token=storage.token, private=storage.private)
        store.ensure_repo()
        return store
    return LocalRawStore(local_dir or storage.local_dir)


def main(argv: Optional[List[str]] = None) -> int:
    """Main function to run the harvester."""
    args = parse_args(argv)
    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = HarvestConfig.from_env()
    if args.max_pages is not None:
        config.max_pages = args.max_pages
    if args.page_delay is not None:
        config.page_delay = args.page_delay
    if args.batch_size is not None:
        config.batch_size = args.batch_size

    harvester = Harvester(
        client=HarvestClient(config),
        store=build_store(StorageConfig.from_env(), args.local_store),
        publisher=JsonlMessagePublisher(args.output),
        batch_size=config.batch_size,
    )

    with jsonlines.open(args.work_items) as reader:
        items = list(reader.iter(type=dict, skip_empty=True))
    logger.info("Received %d work items", len(items))

    response = handle_work_items(items, harvester)
    failures = response.get("batchItemFailures", [])
    logger.info("Processed %d work items, %d to retry", len(items), len(failures))
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
