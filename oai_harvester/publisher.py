# oai_harvester/publisher.py
# Delivers outgoing harvest messages by appending them to a JSON Lines file.

import logging
import uuid
from pathlib import Path
from typing import Any, Dict

import jsonlines

from .errors import DeliveryError
from .utils import utc_timestamp

logger = logging.getLogger(__name__)


class JsonlMessagePublisher:
    """Appends one ``{"messageId", "messageType", "journalKey", "body"}`` line per message."""

    def __init__(self, path: str):
        self.path = Path(path)

    def send(self, message: Dict[str, Any]) -> str:
        body = dict(message)
        body["timestamp"] = body.get("timestamp") or utc_timestamp()
        message_id = str(uuid.uuid4())

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with jsonlines.open(self.path, mode="a") as writer:
                writer.write({
                    "messageId": message_id,
                    "messageType": body.get("messageType"),
                    "journalKey": body.get("journalKey"),
                    "body": body,
                })
        except (OSError, TypeError, ValueError) as e:
            raise DeliveryError(f"Failed to publish message to {self.path}: {e}") from e

        logger.debug("Sent %s message %s for journal %s", body.get("messageType"), message_id, body.get("journalKey"))
        return message_id
