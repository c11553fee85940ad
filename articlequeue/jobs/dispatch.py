"""Contracts between the execution loop and the article generation collaborator."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from types import TracebackType
from typing import Any, Protocol


class GenerationError(Exception):
  """Raised by a generation task when one item cannot be produced."""


@dataclass(frozen=True)
class GenerationRequest:
  """Everything a generation task needs to produce one article."""

  job_id: str
  item_id: str
  owner_id: str
  sequence: int
  payload: dict[str, Any]


class GenerationTask(Protocol):
  """Opaque, slow, rate-limited producer of one artifact per queue item."""

  async def run(self, request: GenerationRequest) -> str:
    """Produce the artifact and return a reference to it."""


class ConcurrencyLimiter(Protocol):
  """Process-wide limiter wrapped around every generation call."""

  async def __aenter__(self) -> Any: ...

  async def __aexit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None) -> bool | None: ...


class NullLimiter:
  """Limiter that never blocks."""

  async def __aenter__(self) -> NullLimiter:
    return self

  async def __aexit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None) -> None:
    return None


def build_global_limiter(max_in_flight: int) -> ConcurrencyLimiter:
  """Return a semaphore shared across jobs, or a no-op limiter when disabled."""
  if max_in_flight <= 0:
    return NullLimiter()
  return asyncio.Semaphore(max_in_flight)
