# utils/transaction_logger.py
import json

from utils.date_utils import utcnow
from utils.mongo_index import TRANSACTION_LOG_COLLECTION

REDACTED = "[REDACTED]"
SENSITIVE_HEADERS = {"authorization", "cookie", "set-cookie"}
SENSITIVE_FIELD_MARKERS = ("password", "token")


def _redact(value):
    if isinstance(value, dict):
        return {
            k: REDACTED if any(m in k.lower() for m in SENSITIVE_FIELD_MARKERS) else _redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_redact(v) for v in value]
    return value


def redact_headers(headers) -> dict:
    return {k: (REDACTED if k.lower() in SENSITIVE_HEADERS else v) for k, v in dict(headers).items()}


def redact_body(body):
    """Blank out credential fields in a JSON request body; other bodies are dropped."""
    if not body:
        return None
    try:
        parsed = json.loads(body)
    except ValueError:
        return REDACTED
    return _redact(parsed)


def log_transaction_sync(db, log: dict):
    """Write a log entry into the transaction history (synchronous client)"""
    db[TRANSACTION_LOG_COLLECTION].insert_one(log)


def build_log(request, response_status, duration_ms: int, author=None):
    """Build log document"""
    return {
        "endpoint": request.url.path,
        "method": request.method,
        "query_params": _redact(dict(request.query_params)),
        "headers": redact_headers(request.headers),
        "body": redact_body(getattr(request.state, "body", None)),
        "response_status": response_status,
        "author": author,
        "timestamp": utcnow(),
        "duration_ms": duration_ms,
    }
