from __future__ import annotations

import json
import logging

from tokenpool.core.logging_config import JsonLogFormatter, correlation_id_var


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("tokenpool.allocation", logging.INFO, __file__, 1, "claim_issued", (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_carries_extra_fields(clock) -> None:
    formatter = JsonLogFormatter(clock=clock)

    payload = json.loads(formatter.format(_record(claimant_id="c-1", token_id="t-1")))

    assert payload["ts"] == "2025-01-01T00:00:00+00:00"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "tokenpool.allocation"
    assert payload["msg"] == "claim_issued"
    assert payload["claimant_id"] == "c-1"
    assert payload["token_id"] == "t-1"
    assert "args" not in payload


def test_json_formatter_includes_correlation_id(clock) -> None:
    formatter = JsonLogFormatter(clock=clock)
    token = correlation_id_var.set("corr-42")
    try:
        payload = json.loads(formatter.format(_record()))
    finally:
        correlation_id_var.reset(token)
    assert payload["correlation_id"] == "corr-42"


def test_json_formatter_serialises_unknown_values(clock) -> None:
    formatter = JsonLogFormatter(clock=clock)
    payload = json.loads(formatter.format(_record(blocked_until=clock.now())))
    assert payload["blocked_until"] == "2025-01-01 00:00:00+00:00"
