"""Persistence for generated articles."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from starlette.concurrency import run_in_threadpool

_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class StoredArticle:
  """An article as handed to the store."""

  job_id: str
  item_id: str
  keyword: str
  title: str
  body: str


class ArticleStore(Protocol):
  async def save(self, article: StoredArticle) -> str:
    """Persist an article and return its reference."""


def slugify(value: str, *, max_length: int = 60) -> str:
  slug = _SLUG_PATTERN.sub("-", value.lower()).strip("-")
  return slug[:max_length].rstrip("-") or "article"


class FileArticleStore:
  """Write each article to ``<root>/<job_id>/<item_id>-<slug>.md``."""

  def __init__(self, root: str | Path) -> None:
    self._root = Path(root)

  async def save(self, article: StoredArticle) -> str:
    ref = f"{article.job_id}/{article.item_id}-{slugify(article.keyword)}.md"
    path = self._root / ref
    content = f"# {article.title}\n\n{article.body.strip()}\n"

    def _write() -> None:
      path.parent.mkdir(parents=True, exist_ok=True)
      path.write_text(content, encoding="utf-8")

    await run_in_threadpool(_write)
    return ref
