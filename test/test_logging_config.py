import json
import logging
import sys

from ist.logging_config import JsonFormatter, parse_event


def _record(msg, *args, exc_info=None):
    return logging.LogRecord("ist.sales", logging.INFO, __file__, 1, msg, args, exc_info)


def test_event_messages_become_structured_fields():
    line = JsonFormatter().format(_record("sale_created sale_id=%s qty=%s item=%s", "s1", 3, "Green tea"))
    payload = json.loads(line)

    assert payload["logger"] == "ist.sales"
    assert payload["message"] == "sale_created sale_id=s1 qty=3 item=Green tea"
    assert payload["event"] == "sale_created"
    assert payload["fields"] == {"sale_id": "s1", "qty": "3", "item": "Green tea"}


def test_plain_messages_have_no_event():
    payload = json.loads(JsonFormatter().format(_record("Could not complete the operation.")))
    assert "event" not in payload
    assert "fields" not in payload


def test_parse_event_keeps_spaces_inside_values():
    event, fields = parse_event("purge_sale_skipped sale_id=abc reason=Item not found in inventory.")
    assert event == "purge_sale_skipped"
    assert fields == {"sale_id": "abc", "reason": "Item not found in inventory."}
    assert parse_event("sales_purged") == ("sales_purged", {})


def test_exceptions_are_included():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        rec = _record("snapshot_listener_failed listener=%s", 4, exc_info=sys.exc_info())
    payload = json.loads(JsonFormatter().format(rec))
    assert payload["fields"] == {"listener": "4"}
    assert "RuntimeError: boom" in payload["exception"]
