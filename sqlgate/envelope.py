"""Uniform response envelope shared by every gateway endpoint."""

from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

SUCCESS = 0
FAILURE = 1


def respond(
    code: int,
    message: str | None = None,
    data: Any = None,
    http_status: int = 200,
) -> JSONResponse:
    """
    Build the ``{code, message, data}`` response.

    ``message`` and ``data`` are left out of the body when they are None,
    so a success without payload serializes as ``{"code": 0}``.
    """
    body: dict[str, Any] = {"code": code}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = jsonable_encoder(data)
    return JSONResponse(content=body, status_code=http_status)
