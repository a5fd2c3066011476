# utils/responses.py
from typing import Any, Optional

from pydantic import BaseModel

from Schemas.base_schema import dump


def ok(data: Any = None, message: Optional[str] = None) -> dict:
    """Success envelope shared by every route: {success, message?, data?}."""
    body = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = dump(data) if isinstance(data, BaseModel) else data
    return body
