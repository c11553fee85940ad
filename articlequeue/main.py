from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from articlequeue import __version__
from articlequeue.api.routes import jobs
from articlequeue.config import get_settings
from articlequeue.core.exceptions import global_exception_handler, http_exception_handler, request_validation_exception_handler
from articlequeue.core.lifespan import lifespan
from articlequeue.core.middleware import RequestLoggingMiddleware

settings = get_settings()

app = FastAPI(title="articlequeue", version=__version__, lifespan=lifespan)

app.add_middleware(
  CORSMiddleware,
  allow_origins=list(settings.allowed_origins),
  allow_credentials=True,
  allow_methods=["GET", "POST", "OPTIONS"],
  allow_headers=["content-type", "authorization", "x-user-id"],
  expose_headers=["content-length", "x-request-id"],
)

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

app.add_middleware(RequestLoggingMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": __version__}


app.include_router(jobs.router, prefix="/v1/jobs", tags=["jobs"])
