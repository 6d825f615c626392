# oai_harvester/uploader.py
# Stores raw OAI-PMH responses, wrapped with harvest metadata, before records are published.

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional
from xml.sax.saxutils import escape

from huggingface_hub import HfApi, hf_hub_url

from .errors import DeliveryError
from .utils import utc_now, utc_timestamp

logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/xml"
SOURCE_NAME = "index-journals-data-scraping"

_XML_DECLARATION = re.compile(r"^\s*<\?xml[^>]*\?>\s*")


@dataclass
class StoredFile:
    url: str
    key: str
    path: str
    filename: str
    size: int
    content_type: str = CONTENT_TYPE


def build_envelope(content: Optional[str], label: str, source_url: str) -> str:
    """Wrap raw OAI XML in an <oai-scraping-result> document with provenance metadata."""
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        "<oai-scraping-result>",
        "  <metadata>",
        f"    <journalKey>{escape(label or '')}</journalKey>",
        f"    <oaiUrl>{escape(source_url or '')}</oaiUrl>",
        f"    <scrapedAt>{utc_timestamp()}</scrapedAt>",
        f"    <source>{SOURCE_NAME}</source>",
        "  </metadata>",
        "  <oai-data>",
    ]
    if content and content.strip():
        body = _XML_DECLARATION.sub("", content, count=1)
        lines.append("    " + body.replace("\n", "\n    "))
    else:
        lines.append("    <!-- No OAI data available -->")
    lines.extend(["  </oai-data>", "</oai-scraping-result>"])
    return "\n".join(lines) + "\n"


def generate_key(label: str, now: Optional[datetime] = None) -> str:
    """Date-foldered object key, e.g. 2024/05/01/jk-identify/jk-identify_20240501_120000.xml"""
    now = now or utc_now()
    filename = f"{label}_{now.strftime('%Y%m%d_%H%M%S')}.xml"
    return f"{now.strftime('%Y/%m/%d')}/{label}/{filename}"


class HubRawStore:
    """Uploads raw XML files to a Hugging Face dataset repository."""

    def __init__(self, repo_id: str, token: Optional[str] = None, private: bool = False,
                 api: Optional[HfApi] = None):
        if not repo_id:
            raise ValueError("A dataset repository id is required")
        self.repo_id = repo_id
        self.token = token
        self.private = private
        self.api = api or HfApi()

    def ensure_repo(self) -> None:
        self.api.create_repo(
            repo_id=self.repo_id,
            repo_type="dataset",
            token=self.token,
            private=self.private,
            exist_ok=True,
        )

    def save(self, content: Optional[str], label: str, source_url: str) -> StoredFile:
        key = generate_key(label)
        document = build_envelope(content, label, source_url).encode("utf-8")
        try:
            self.api.upload_file(
                path_or_fileobj=document,
                path_in_repo=key,
                repo_id=self.repo_id,
                repo_type="dataset",
                token=self.token,
                commit_message=f"Add {key}",
            )
        except Exception as e:
            raise DeliveryError(f"Failed to upload {key} to {self.repo_id}: {e}") from e

        logger.info("Uploaded %s (%d bytes) to %s", key, len(document), self.repo_id)
        return StoredFile(
            url=hf_hub_url(self.repo_id, key, repo_type="dataset"),
            key=key,
            path=f"hf://datasets/{self.repo_id}/{key}",
            filename=key.rsplit("/", 1)[-1],
            size=len(document),
        )


class LocalRawStore:
    """Writes raw XML files below a local directory, using the same key layout."""

    def __init__(self, root: str = "data"):
        self.root = Path(root)

    def save(self, content: Optional[str], label: str, source_url: str) -> StoredFile:
        key = generate_key(label)
        document = build_envelope(content, label, source_url).encode("utf-8")
        target = self.root / key
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(document)
        except OSError as e:
            raise DeliveryError(f"Failed to write {target}: {e}") from e

        logger.info("Saved %s (%d bytes)", target, len(document))
        return StoredFile(
            url=target.resolve().as_uri(),
            key=key,
            path=str(target),
            filename=target.name,
            size=len(document),
        )
