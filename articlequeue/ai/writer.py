"""Article generation through the OpenAI chat completions API."""

from __future__ import annotations

import logging
from typing import Any

from openai import AsyncOpenAI

from articlequeue.ai.backoff import retry_with_backoff
from articlequeue.jobs.dispatch import GenerationError, GenerationRequest
from articlequeue.services.article_store import ArticleStore, StoredArticle

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = "You are an experienced SEO content writer. Write complete, well structured articles in Markdown. Start with a single '# ' title line."


def build_article_prompt(keyword: str, settings: dict[str, Any]) -> str:
  """Render the user prompt for one keyword."""
  word_count = int(settings.get("word_count", 1500))
  tone = settings.get("tone") or "professional"
  lines = [
    f"Write an article targeting the keyword: {keyword}",
    f"Length: about {word_count} words.",
    f"Tone: {tone}.",
    "Include an introduction, descriptive section headings and a conclusion.",
  ]
  if settings.get("call_to_action"):
    lines.append(f"End with this call to action: {settings['call_to_action']}")
  return "\n".join(lines)


def split_title(content: str, fallback: str) -> tuple[str, str]:
  """Pull the leading Markdown title off a generated article."""
  stripped = content.strip()
  first_line, _, rest = stripped.partition("\n")
  if first_line.startswith("# "):
    return first_line[2:].strip() or fallback, rest.strip()
  return fallback, stripped


class ArticleWriterTask:
  """Generates one article per queue item and stores it."""

  def __init__(self, *, api_key: str, model: str, store: ArticleStore, base_url: str | None = None, client: AsyncOpenAI | None = None) -> None:
    self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)
    self._model = model
    self._store = store

  async def run(self, request: GenerationRequest) -> str:
    keyword = str(request.payload.get("keyword") or "").strip()
    if not keyword:
      raise GenerationError("Item has no keyword.")
    settings = dict(request.payload.get("settings") or {})

    response = await retry_with_backoff(
      self._client.chat.completions.create,
      model=self._model,
      messages=[{"role": "system", "content": _SYSTEM_PROMPT}, {"role": "user", "content": build_article_prompt(keyword, settings)}],
    )
    content = response.choices[0].message.content or ""
    if not content.strip():
      raise GenerationError(f"Model returned an empty article for '{keyword}'.")

    if response.usage:
      logger.info("Article for job %s item %d used %d tokens.", request.job_id, request.sequence, response.usage.total_tokens)

    title, body = split_title(content, keyword.title())
    return await self._store.save(StoredArticle(job_id=request.job_id, item_id=request.item_id, keyword=keyword, title=title, body=body))
