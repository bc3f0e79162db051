"""
Logging setup for the report engine.

``configure_logging(config)`` is called once per CLI command.  Library
modules only ever do ``logger = logging.getLogger(__name__)``.

Provider keys never reach a logger call directly (they travel as
``SecretStr``), but two paths could still leak one:

  - request URLs: Etherscan and Binance errors may echo a URL whose query
    string carries ``apikey=...``.  ``KeyScrubFilter`` rewrites those
    parameters in every rendered message.
  - ``extra=`` fields: ``JsonLineFormatter`` replaces any field whose name
    looks like a credential with ``[REDACTED]``, recursing into dicts/lists.

JSON mode (``[logging] json_format = true``) emits one object per line::

    {"ts": "2026-02-24T15:00:00Z", "level": "INFO", "logger": "...", "msg": "..."}
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from report_kit.config import LoggingConfig

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s | %(message)s"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
REDACTED = "[REDACTED]"

SENSITIVE_FIELDS = frozenset({
    "api_key", "apikey", "x_cg_pro_api_key", "x_cg_demo_api_key",
    "secret", "plaintext", "master_key", "token", "authorization", "credential",
})

_KEY_PARAM_RE = re.compile(
    r"(?i)\b(apikey|api_key|x_cg_pro_api_key|x_cg_demo_api_key)=([^&\s'\"]+)"
)

_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


def scrub_key_params(text: str) -> str:
    """Replace the value of any key-bearing query parameter in ``text``."""
    return _KEY_PARAM_RE.sub(lambda m: f"{m.group(1)}={REDACTED}", text)


def redact_fields(data: Any) -> Any:
    """Recursively replace values stored under credential-like names."""
    if isinstance(data, dict):
        return {
            k: REDACTED if str(k).lower() in SENSITIVE_FIELDS else redact_fields(v)
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact_fields(item) for item in data]
    return data


class KeyScrubFilter(logging.Filter):
    """Render the message once and strip key-bearing query parameters."""

    def filter(self, record: logging.LogRecord) -> bool:
        rendered = record.getMessage()
        scrubbed = scrub_key_params(rendered)
        if scrubbed != rendered:
            record.msg = scrubbed
            record.args = None
        return True


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record; ``extra=`` fields go at top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                TIMESTAMP_FORMAT
            ),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        extras = {
            k: v for k, v in record.__dict__.items()
            if k not in _RECORD_ATTRS and not k.startswith("_")
        }
        entry.update(redact_fields(extras))
        return json.dumps(entry, default=str)


def configure_logging(config: "LoggingConfig") -> None:
    """Install stdout (and optional file) handlers on the root logger.

    Args:
        config: ``[logging]`` section of ``AppConfig``.
    """
    level = getattr(logging, config.level.upper(), logging.INFO)
    formatter: logging.Formatter = (
        JsonLineFormatter() if config.json_format
        else logging.Formatter(TEXT_FORMAT, datefmt=TIMESTAMP_FORMAT)
    )
    scrub = KeyScrubFilter()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        path = Path(config.log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(scrub)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    # httpx logs every request URL at INFO.
    for noisy in ("httpx", "httpcore", "openpyxl"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
