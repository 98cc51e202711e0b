"""Tests for the JSON log formatter."""

import json
import logging

from rentalcore.common.logging import JSONFormatter


def _record(**extra):
    record = logging.LogRecord(
        "rentalcore.booking", logging.INFO, __file__, 1, "conflict on %s", ("D1",), None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_message_and_level():
    entry = json.loads(JSONFormatter().format(_record()))
    assert entry["message"] == "conflict on D1"
    assert entry["level"] == "INFO"
    assert entry["logger"] == "rentalcore.booking"
    assert "job_id" not in entry


def test_context_fields_are_lifted():
    entry = json.loads(JSONFormatter().format(_record(job_id="J1", device_id="D1", other="x")))
    assert entry["job_id"] == "J1"
    assert entry["device_id"] == "D1"
    assert "other" not in entry
