import jsonlines
import pytest

from oai_harvester.errors import DeliveryError
from oai_harvester.publisher import JsonlMessagePublisher


def read_lines(path):
    with jsonlines.open(path) as reader:
        return list(reader)


def test_send_appends_messages(tmp_path):
    path = tmp_path / "out" / "messages.jsonl"
    publisher = JsonlMessagePublisher(str(path))

    first = publisher.send({"journalKey": "joe", "messageType": "Identify", "success": True})
    second = publisher.send({"journalKey": "joe", "messageType": "ArticleBatch", "timestamp": "2024-01-01T00:00:00.000Z"})

    lines = read_lines(path)
    assert [line["messageId"] for line in lines] == [first, second]
    assert first != second
    assert lines[0]["messageType"] == "Identify"
    assert lines[0]["journalKey"] == "joe"
    assert lines[0]["body"]["success"] is True
    assert lines[0]["body"]["timestamp"].endswith("Z")
    assert lines[1]["body"]["timestamp"] == "2024-01-01T00:00:00.000Z"


def test_send_does_not_modify_caller_message(tmp_path):
    message = {"journalKey": "joe", "messageType": "Identify"}
    JsonlMessagePublisher(str(tmp_path / "m.jsonl")).send(message)
    assert "timestamp" not in message


def test_unserializable_message_is_delivery_error(tmp_path):
    publisher = JsonlMessagePublisher(str(tmp_path / "m.jsonl"))
    with pytest.raises(DeliveryError):
        publisher.send({"journalKey": "joe", "payload": object()})
