import logging
import time
import uuid
from typing import Any

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger("articlequeue.core.middleware")

REQUEST_ID_HEADER = "x-request-id"


class RequestLoggingMiddleware:
  """Assign a request id, echo it on the response and log one line per request.

  A caller-supplied ``X-Request-Id`` is reused so queue submissions can be
  traced across services. Bodies are never read.
  """

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    headers = Headers(scope=scope)
    request_id = headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    scope.setdefault("state", {})["request_id"] = request_id
    started = time.perf_counter()
    response_status = 0

    async def send_with_request_id(message: dict[str, Any]) -> None:
      nonlocal response_status
      if message["type"] == "http.response.start":
        response_status = message["status"]
        MutableHeaders(scope=message).setdefault(REQUEST_ID_HEADER, request_id)
      await send(message)

    try:
      await self.app(scope, receive, send_with_request_id)
    finally:
      elapsed_ms = (time.perf_counter() - started) * 1000
      logger.info("%s %s -> %s user=%s request_id=%s %.1fms", scope.get("method"), scope.get("path"), response_status, headers.get("x-user-id", "-"), request_id, elapsed_ms)
