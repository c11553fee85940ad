"""Minimal .env support so local runs pick up ARTICLEQUEUE_* settings."""

from __future__ import annotations

import os
from pathlib import Path


def default_env_path() -> Path:
  """Return the .env path at the repository root."""
  return Path(__file__).resolve().parents[2] / ".env"


def _strip_quotes(value: str) -> str:
  if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
    return value[1:-1]
  return value


def load_env_file(path: Path, *, override: bool = False) -> dict[str, str]:
  """Export KEY=VALUE lines from a dotenv file and return the pairs that were applied."""
  if not path.is_file():
    return {}

  applied: dict[str, str] = {}
  for raw_line in path.read_text(encoding="utf-8").splitlines():
    line = raw_line.strip()
    # Skip blanks, comments and malformed lines.
    if not line or line.startswith("#"):
      continue
    line = line.removeprefix("export ").lstrip()
    key, sep, value = line.partition("=")
    key = key.strip()
    if not sep or not key:
      continue
    # Real environment values win unless the caller asks otherwise.
    if key in os.environ and not override:
      continue
    os.environ[key] = _strip_quotes(value.strip())
    applied[key] = os.environ[key]
  return applied
