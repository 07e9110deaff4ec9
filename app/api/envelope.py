"""Response envelope and the camelCase base model shared by the routers.

Success bodies are ``{success, message, data?, timestamp}``; error
bodies (built in ``app.main``) are ``{success: false, message, code}``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Wire models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, list):
        return [_dump(v) for v in value]
    if isinstance(value, dict):
        return {k: _dump(v) for k, v in value.items()}
    return value


def ok(message: str, data: Any = None, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True, "message": message}
    if data is not None:
        body["data"] = _dump(data)
    body.update(extra)
    body["timestamp"] = datetime.now(UTC).isoformat()
    return body


def error_body(message: str, code: str, **extra: Any) -> dict[str, Any]:
    return {"success": False, "message": message, "code": code, **extra}
