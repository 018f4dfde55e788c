"""
Shapes are plain tuples of ints. A dimension equal to `BATCH` is a
placeholder that `resolve_shape` replaces with the batch size at allocation.
"""

from __future__ import annotations

from typing import Sequence

BATCH = -1

Shape = tuple[int, ...]


def as_shape(dimensions: Sequence[int] | int) -> Shape:
  if isinstance(dimensions, int):
    dimensions = (dimensions,)
  shape = tuple(int(size) for size in dimensions)
  for size in shape:
    if size != BATCH and size <= 0:
      raise ValueError(f"Invalid dimension {size} in shape {shape}")
  return shape


def is_resolved(shape: Shape) -> bool:
  return BATCH not in shape


def resolve_shape(shape: Shape, batch_size: int) -> Shape:
  if batch_size <= 0:
    raise ValueError(f"Batch size must be positive, got {batch_size}")
  return tuple(batch_size if size == BATCH else size for size in shape)


def dimensions_match(left: int, right: int) -> bool:
  """Placeholder dimensions are compatible with anything until resolved."""
  return left == right or left == BATCH or right == BATCH


def follows(shape: Shape, declared: Shape) -> bool:
  """True when `shape` is `declared` with its placeholders filled in."""
  return len(shape) == len(declared) and all(
    dimensions_match(size, pattern) for size, pattern in zip(shape, declared)
  )


def broadcasts_onto(source: Shape, target: Shape) -> bool:
  if len(source) > len(target):
    return False
  for source_size, target_size in zip(reversed(source), reversed(target)):
    if source_size != 1 and not dimensions_match(source_size, target_size):
      return False
  return True


def format_shape(shape: Shape) -> str:
  return "(" + ", ".join("batch" if size == BATCH else str(size) for size in shape) + ")"
