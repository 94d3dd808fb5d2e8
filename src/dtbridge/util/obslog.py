from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict


class JsonlFormatter(logging.Formatter):
    """One JSON object per line.

    Bridge log calls tag records with `extra={"account_id": ...}` and, for
    per-message lines, `conversation_id`; both are lifted into the record.
    """

    def __init__(self, *, component: str):
        super().__init__()
        self._component = component

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "component": self._component,
            "msg": record.getMessage(),
        }
        account_id = getattr(record, "account_id", None)
        if account_id:
            payload["account_id"] = str(account_id)
        conversation_id = getattr(record, "conversation_id", None)
        if conversation_id:
            payload["conversation_id"] = str(conversation_id)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_root_json_logging(*, component: str, level: str = "INFO") -> None:
    """Send root logging to stderr as JSONL. Called once from the entry point."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonlFormatter(component=component))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(level.upper())
