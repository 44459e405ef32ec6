"""Single-line JSON log output for log aggregation.

Enabled with ``API_STRUCTURED_LOGGING=true``.  Every line carries
``timestamp``, ``level``, ``logger`` and ``message``.  Seat context passed
through ``extra=`` is lifted to top-level keys so aggregators can filter on
it without parsing the message::

    logger.info("seat synced", extra={"account_id": "acct-1", "seat_count": 4})

The access log attaches its request summary under ``request``.
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

# ``extra=`` keys copied to the top level when present and not None.
CONTEXT_FIELDS: tuple[str, ...] = (
    "account_id",
    "user_id",
    "member_id",
    "subscription_id",
    "seat_count",
    "correlation_id",
    "request",
)


class JSONFormatter(logging.Formatter):
    """Render log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None and value != "":
                payload[field] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)
