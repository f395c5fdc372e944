from __future__ import annotations

import json
import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

# Services log "event_name key=value key=value"; values may contain spaces.
_EVENT_RE = re.compile(r"^(?P<event>[a-z][a-z0-9_]*)(?: (?P<fields>\w+=.*))?$", re.DOTALL)
_FIELD_RE = re.compile(r"(\w+)=(.*?)(?= \w+=|$)", re.DOTALL)

# audit file -> loggers that also write to it
AUDIT_FILES = {
    "sales.log": ("ist.sales", "ist.purge"),
    "inventory.log": ("ist.inventory",),
    "store.log": ("ist.store",),
}


def parse_event(message: str) -> tuple[str | None, dict[str, str]]:
    m = _EVENT_RE.match(message)
    if not m:
        return None, {}
    return m.group("event"), dict(_FIELD_RE.findall(m.group("fields") or ""))


class JsonFormatter(logging.Formatter):
    """One JSON object per line; event-style messages also get `event` and `fields`."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        payload = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
        }
        event, fields = parse_event(message)
        if event:
            payload["event"] = event
            if fields:
                payload["fields"] = fields
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _handler(path: Path, level: int) -> RotatingFileHandler:
    fh = RotatingFileHandler(path, maxBytes=2_000_000, backupCount=5, encoding="utf-8")
    fh.setFormatter(JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S"))
    fh.setLevel(level)
    return fh


def setup_logging(logs_dir: Path, level: int = logging.INFO) -> None:
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    if root.handlers:
        return

    root.addHandler(_handler(logs_dir / "app.log", logging.INFO))
    root.addHandler(_handler(logs_dir / "errors.log", logging.ERROR))

    for filename, names in AUDIT_FILES.items():
        handler = _handler(logs_dir / filename, logging.INFO)
        for name in names:
            logging.getLogger(name).addHandler(handler)
            logging.getLogger(name).setLevel(logging.INFO)
