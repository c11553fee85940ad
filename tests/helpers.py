"""Shared test doubles for the job queue."""

from __future__ import annotations

import asyncio

from articlequeue.jobs.dispatch import GenerationError, GenerationRequest


class RecordingTask:
  """Generation task double that records dispatch order and overlap."""

  def __init__(self, *, fail: set[str] | None = None, hang: set[str] | None = None, delays: dict[int, float] | None = None, default_delay: float = 0.01) -> None:
    self.fail = fail or set()
    self.hang = hang or set()
    self.delays = delays or {}
    self.default_delay = default_delay
    self.calls: list[int] = []
    self.active = 0
    self.max_active = 0

  async def run(self, request: GenerationRequest) -> str:
    self.calls.append(request.sequence)
    self.active += 1
    self.max_active = max(self.max_active, self.active)
    try:
      await asyncio.sleep(self.delays.get(request.sequence, self.default_delay))
      keyword = request.payload.get("keyword")
      if keyword in self.hang:
        await asyncio.Event().wait()
      if keyword in self.fail:
        raise GenerationError(f"boom: {keyword}")
      return f"ref-{request.sequence}"
    finally:
      self.active -= 1


class GatedTask(RecordingTask):
  """Blocks every call until the gate opens."""

  def __init__(self) -> None:
    super().__init__(default_delay=0)
    self.gate = asyncio.Event()
    self.started = asyncio.Event()

  async def run(self, request: GenerationRequest) -> str:
    self.started.set()
    await self.gate.wait()
    return await super().run(request)


def make_items(*keywords: str) -> list[dict]:
  return [{"keyword": keyword, "settings": {"word_count": 500, "tone": "friendly"}} for keyword in keywords]
