"""Keep secrets and full wallet addresses out of log output.

Wallet addresses are rendered as first six / last four characters. Values
under sensitive keys (tokens, seeds, nonces, ...) are replaced outright.
"""

from __future__ import annotations

import logging
import re
from typing import Any

SENSITIVE_KEYS = (
    "password", "secret", "key", "token", "seed", "private", "nonce",
    "authorization", "cookie", "session", "credential",
)

# Ledger-style account ids (r...) and 0x-prefixed hex addresses
_WALLET_RE = re.compile(r"\b(r[1-9A-HJ-NP-Za-km-z]{24,34}|0x[0-9a-fA-F]{40})\b")
_BEARER_RE = re.compile(r"(?i)bearer\s+[A-Za-z0-9\-_.=]+")

_MAX_DEPTH = 3


def redact_wallet(address: str | None) -> str:
    """Render a wallet as ``rAbCdE...wXyZ``."""
    if not address:
        return ""
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


def redact_text(text: str) -> str:
    text = _BEARER_RE.sub("Bearer [REDACTED]", text)
    return _WALLET_RE.sub(lambda m: redact_wallet(m.group(0)), text)


def sanitize(data: Any, depth: int = 0) -> Any:
    """Return a copy of ``data`` that is safe to log."""
    if depth > _MAX_DEPTH:
        return {"_truncated": True}
    if isinstance(data, dict):
        result: dict[str, Any] = {}
        for key, value in data.items():
            lower = str(key).lower()
            if any(s in lower for s in SENSITIVE_KEYS):
                result[key] = "[REDACTED]"
            elif isinstance(value, str) and ("wallet" in lower or "address" in lower):
                result[key] = redact_wallet(value)
            else:
                result[key] = sanitize(value, depth + 1)
        return result
    if isinstance(data, (list, tuple)):
        if len(data) > 5:
            return f"[Array({len(data)})]"
        return [sanitize(v, depth + 1) for v in data]
    if isinstance(data, str):
        return redact_text(data)
    return data


class RedactingFilter(logging.Filter):
    """Logging filter that scrubs the message template and its arguments."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_text(record.msg)
        if isinstance(record.args, dict):
            record.args = sanitize(record.args)
        elif isinstance(record.args, tuple):
            record.args = tuple(sanitize(arg) for arg in record.args)
        return True


def install_redaction(logger_name: str = "luxbroker") -> None:
    """Attach a ``RedactingFilter`` to the handlers that emit our records.

    Logger-level filters do not apply to records propagated from child
    loggers, so the filter goes on the handlers of the named logger and of
    the root logger.
    """
    for target in (logging.getLogger(logger_name), logging.getLogger()):
        for handler in target.handlers:
            if not any(isinstance(f, RedactingFilter) for f in handler.filters):
                handler.addFilter(RedactingFilter())
