"""
Dense storage owned by a graph node.

A `Tensor` here is deliberately dumb: it does not know about the graph and
does not differentiate anything. It only tracks whether its buffer exists,
what shape it has, and lets its owner refill it in place.

Lifecycle:
1. `Tensor()` starts unallocated; reading `data` raises `UnallocatedError`.
2. `allocate(shape, value)` creates the buffer. Calling it again with the
   same shape keeps the existing buffer (and its contents) untouched, so
   repeated allocation across iterations never reallocates.
3. `set(value)` refills the existing buffer without changing its identity;
   `assign(array)` copies new contents in, reallocating only on a shape change.
"""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np

from .errors import UnallocatedError
from .shape import Shape, as_shape, format_shape, is_resolved

DTYPE = np.float32


def _to_array(value) -> np.ndarray:
  return np.asarray(value, dtype=DTYPE)


class Tensor:
  __slots__ = ("_data", "name")

  def __init__(self, shape: Optional[Shape] = None, value=None, name: str = "tensor"):
    self._data: Optional[np.ndarray] = None
    self.name = name
    if shape is not None:
      self.allocate(shape, value)

  def __repr__(self):
    if self._data is None:
      return f"Tensor(name={self.name!r}, allocated=False)"
    return (
      f"Tensor(name={self.name!r}, shape={format_shape(self.shape)}, "
      f"dtype={self._data.dtype})"
    )

  def __bool__(self):
    return self._data is not None

  @property
  def allocated(self) -> bool:
    return self._data is not None

  @property
  def data(self) -> np.ndarray:
    if self._data is None:
      raise UnallocatedError(f"Tensor '{self.name}' has not been allocated")
    return self._data

  @property
  def shape(self) -> Shape:
    return self.data.shape

  def __array__(self, dtype=None, copy=None):
    return self.data if dtype is None else self.data.astype(dtype)

  def allocate(
    self,
    shape: Shape,
    value: float | np.ndarray | Callable[[], float | np.ndarray] | None = None,
  ) -> bool:
    """
    Create the buffer for `shape`, filled with `value` when given (a scalar,
    an array broadcastable to `shape`, or a zero-argument producer of either).
    Returns False when an identically shaped buffer already exists.
    """
    shape = as_shape(shape)
    if not is_resolved(shape):
      raise ValueError(
        f"Tensor '{self.name}' cannot be allocated with unresolved shape "
        f"{format_shape(shape)}"
      )
    if self._data is not None and self._data.shape == shape:
      return False
    if callable(value):
      value = value()
    if value is None:
      self._data = np.empty(shape, dtype=DTYPE)
    else:
      self._data = np.full(shape, _to_array(value), dtype=DTYPE)
    return True

  def set(self, value: float | np.ndarray) -> None:
    self.data[...] = value

  def assign(self, array) -> None:
    array = _to_array(array)
    if self._data is None or self._data.shape != array.shape:
      self._data = array.copy()
    else:
      self._data[...] = array
