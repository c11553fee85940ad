import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from articlequeue.config import get_settings

logger = logging.getLogger("articlequeue.core.exceptions")

_INTERNAL_ERROR_DETAIL = "Internal Server Error"


def _json_safe(value: Any) -> Any:
  """Reduce a detail value to JSON primitives; exceptions become ``Type: message``."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set | frozenset):
    return [_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    message = str(value)
    return f"{type(value).__name__}: {message}" if message else type(value).__name__
  return str(value)


def _request_id(request: Request) -> str | None:
  return getattr(request.state, "request_id", None)


def _error_body(detail: Any, *, request_id: str | None = None) -> dict[str, Any]:
  body: dict[str, Any] = {"detail": detail}
  if request_id:
    body["requestId"] = request_id
  return body


def _scrub_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Drop the submitted values from validation errors; keywords and settings stay out of responses and logs."""
  scrubbed: list[dict[str, Any]] = []
  for error in errors:
    entry = {key: value for key, value in error.items() if key != "input"}
    ctx = entry.get("ctx")
    if isinstance(ctx, dict):
      entry["ctx"] = {key: value for key, value in ctx.items() if key != "input"}
    scrubbed.append(_json_safe(entry))
  return scrubbed


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Answer unhandled errors with a bare 500; the traceback goes to the log."""
  request_id = _request_id(request)
  logger.error("Unhandled %s request_id=%s path=%s", type(exc).__name__, request_id, request.url.path, exc_info=exc)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_body(_INTERNAL_ERROR_DETAIL, request_id=request_id))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  request_id = _request_id(request)
  errors = _scrub_validation_errors(list(exc.errors()))
  logger.warning("Rejected %s %s request_id=%s errors=%s", request.method, request.url.path, request_id, errors)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_error_body(errors, request_id=request_id))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Render HTTPExceptions; server-side details other than 503 are replaced with a generic message."""
  request_id = _request_id(request)
  if exc.status_code >= 500 and exc.status_code != status.HTTP_503_SERVICE_UNAVAILABLE:
    logger.error("HTTP %s request_id=%s path=%s detail=%s", exc.status_code, request_id, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=_error_body(_INTERNAL_ERROR_DETAIL, request_id=request_id))

  if get_settings().log_http_4xx:
    logger.warning("HTTP %s request_id=%s path=%s detail=%s", exc.status_code, request_id, request.url.path, exc.detail)
  return JSONResponse(status_code=exc.status_code, content=_error_body(_json_safe(exc.detail), request_id=request_id), headers=exc.headers)
