"""Deterministic article task for local development and tests."""

from __future__ import annotations

import asyncio

from articlequeue.jobs.dispatch import GenerationError, GenerationRequest
from articlequeue.services.article_store import ArticleStore, StoredArticle


class DummyArticleTask:
  """Writes placeholder articles without calling any model.

  Keywords starting with ``fail`` raise so failure paths can be exercised.
  """

  def __init__(self, store: ArticleStore, *, delay_seconds: float = 0) -> None:
    self._store = store
    self._delay_seconds = delay_seconds

  async def run(self, request: GenerationRequest) -> str:
    keyword = str(request.payload.get("keyword") or "").strip()
    if self._delay_seconds > 0:
      await asyncio.sleep(self._delay_seconds)
    if keyword.lower().startswith("fail"):
      raise GenerationError(f"Dummy generator refused keyword '{keyword}'.")

    settings = request.payload.get("settings") or {}
    tone = settings.get("tone", "professional")
    word_count = int(settings.get("word_count", 1500))
    paragraphs = [f"This is a {tone} placeholder article about {keyword}, targeting roughly {word_count} words."]
    if settings.get("call_to_action"):
      paragraphs.append(str(settings["call_to_action"]))
    return await self._store.save(StoredArticle(job_id=request.job_id, item_id=request.item_id, keyword=keyword, title=keyword.title(), body="\n\n".join(paragraphs)))
