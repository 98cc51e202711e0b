"""JSON-lines logging for RentalCore.

Compliance-relevant identifiers passed through ``extra=`` (job, device,
archive record, audit event) are lifted into the JSON object so log
shippers can index them without parsing the message.
"""

import json
import logging
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = ("job_id", "device_id", "record_id", "event_id", "document_type", "severity")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Send the ``rentalcore`` logger tree to stdout as JSON lines."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger("rentalcore")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers = [handler]
    root.propagate = False
