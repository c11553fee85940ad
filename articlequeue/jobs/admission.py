"""Admission checks applied before a batch job is persisted."""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from typing import Any


class AdmissionError(ValueError):
  """Raised when a batch is rejected before any record is created."""


def admit_items(items: Sequence[Mapping[str, Any]], *, max_items: int | None = None) -> list[dict[str, Any]]:
  """Validate a batch and return detached copies of the item payloads.

  Payloads stay opaque here; only the batch shape is checked. Copies are
  taken so later mutation by the caller cannot leak into stored inputs.
  """

  if isinstance(items, str | bytes) or not isinstance(items, Sequence):
    raise AdmissionError("Items must be a list of payloads.")

  if len(items) == 0:
    raise AdmissionError("A batch must contain at least one item.")

  if max_items is not None and len(items) > max_items:
    raise AdmissionError(f"A batch may contain at most {max_items} items; got {len(items)}.")

  admitted: list[dict[str, Any]] = []
  for index, item in enumerate(items):
    if not isinstance(item, Mapping):
      raise AdmissionError(f"Item {index} must be an object.")
    admitted.append(copy.deepcopy(dict(item)))
  return admitted


def merge_item_settings(shared: Mapping[str, Any] | None, item: Mapping[str, Any]) -> dict[str, Any]:
  """Apply batch-wide settings beneath an item's own settings."""

  merged = dict(item)
  item_settings = dict(item.get("settings") or {})
  # Item-level values win over the batch defaults.
  merged["settings"] = {**dict(shared or {}), **item_settings}
  return merged


class ActiveJobLimitError(Exception):
  """Raised when an owner already has too many unfinished jobs."""

  def __init__(self, owner_id: str, limit: int) -> None:
    super().__init__(f"Owner {owner_id} already has {limit} active jobs.")
    self.owner_id = owner_id
    self.limit = limit
