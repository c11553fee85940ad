"""Test configuration for importing the application package."""

from __future__ import annotations

import os

# Required settings must exist before any articlequeue module reads them.
os.environ.setdefault("ARTICLEQUEUE_ALLOWED_ORIGINS", "http://localhost")
os.environ["ARTICLEQUEUE_STORAGE_BACKEND"] = "memory"
os.environ["ARTICLEQUEUE_GENERATOR"] = "dummy"
os.environ["ARTICLEQUEUE_JOBS_AUTO_PROCESS"] = "1"

import pytest  # noqa: E402

from articlequeue.storage.memory_jobs_repo import InMemoryJobsRepository  # noqa: E402


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def jobs_repo() -> InMemoryJobsRepository:
  return InMemoryJobsRepository()
