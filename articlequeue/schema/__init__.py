"""Schema package exports."""

from .jobs import ArticleQueue, ArticleQueueEvent, ArticleQueueItem

__all__ = ["ArticleQueue", "ArticleQueueEvent", "ArticleQueueItem"]
