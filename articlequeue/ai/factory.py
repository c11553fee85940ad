from __future__ import annotations

from articlequeue.config import Settings
from articlequeue.jobs.dispatch import GenerationTask
from articlequeue.services.article_store import FileArticleStore


def get_generation_task(settings: Settings) -> GenerationTask:
  """Factory to get the configured article generation task."""
  store = FileArticleStore(settings.article_dir)
  if settings.generator == "openai":
    from articlequeue.ai.writer import ArticleWriterTask

    if not settings.openai_api_key:
      raise ValueError("ARTICLEQUEUE_OPENAI_API_KEY must be set to use the openai generator.")
    return ArticleWriterTask(api_key=settings.openai_api_key, model=settings.openai_model, base_url=settings.openai_base_url, store=store)

  from articlequeue.ai.dummy import DummyArticleTask

  return DummyArticleTask(store, delay_seconds=settings.dummy_delay_seconds)
