"""Shared FastAPI dependencies for caller identity and the queue manager."""

from __future__ import annotations

from fastapi import Header, HTTPException, Request, status

from articlequeue.jobs.manager import QueueManager


def get_queue_manager(request: Request) -> QueueManager:
  """Return the process-wide queue manager created by the lifespan."""
  manager = getattr(request.app.state, "queue_manager", None)
  if manager is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Job queue is not ready.")
  return manager


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:  # noqa: B008
  """Resolve the caller identity forwarded by the authentication gateway."""
  user_id = (x_user_id or "").strip()
  if not user_id:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header.")
  return user_id
