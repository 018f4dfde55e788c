"""
One-shot parameter initializers.

Each factory returns a function `init(values)` that fills a parameter's value
array in place. `ParamNode` calls it exactly once, on first allocation.

∘ zeros / ones / constant  –  fixed fill.
∘ from_array               –  copy given values, shape checked.
∘ uniform / normal         –  i.i.d. draws from an explicit random stream.
∘ he_normal                –  N(0, √(2 / fan_in)), suited to ReLU layers.
∘ glorot_uniform           –  U(±√(6 / (fan_in + fan_out))), suited to tanh/σ layers.

For a (fan_in, fan_out) weight the fans are read from the first and last axis.
"""

from __future__ import annotations

from typing import Callable, Optional

import numpy as np

Initializer = Callable[[np.ndarray], None]


def _random_state(rng: Optional[np.random.Generator]) -> np.random.Generator:
  return rng if rng is not None else np.random.default_rng()


def _fans(shape: tuple[int, ...]) -> tuple[int, int]:
  if len(shape) == 1:
    return shape[0], shape[0]
  return shape[0], shape[-1]


def constant(fill_value: float) -> Initializer:
  def init(values: np.ndarray) -> None:
    values[...] = fill_value

  return init


def zeros() -> Initializer:
  return constant(0.0)


def ones() -> Initializer:
  return constant(1.0)


def from_array(array) -> Initializer:
  source = np.asarray(array, dtype=np.float32)

  def init(values: np.ndarray) -> None:
    if values.shape != source.shape:
      raise ValueError(
        f"Initializer array has shape {source.shape}, parameter has {values.shape}"
      )
    values[...] = source

  return init


def uniform(
  low: float = -0.1, high: float = 0.1, rng: Optional[np.random.Generator] = None
) -> Initializer:
  random_state = _random_state(rng)

  def init(values: np.ndarray) -> None:
    values[...] = random_state.uniform(low, high, size=values.shape)

  return init


def normal(
  mean: float = 0.0, std: float = 1.0, rng: Optional[np.random.Generator] = None
) -> Initializer:
  random_state = _random_state(rng)

  def init(values: np.ndarray) -> None:
    values[...] = random_state.normal(mean, std, size=values.shape)

  return init


def he_normal(rng: Optional[np.random.Generator] = None) -> Initializer:
  """
  Kaiming (He) initialization. ReLU zeroes about half its inputs, so the
  weight variance is doubled to keep activation variance constant:
  W ~ N(0, √(2 / fan_in)).
  """
  random_state = _random_state(rng)

  def init(values: np.ndarray) -> None:
    fan_in, _ = _fans(values.shape)
    values[...] = random_state.standard_normal(values.shape) * np.sqrt(2.0 / fan_in)

  return init


def glorot_uniform(rng: Optional[np.random.Generator] = None) -> Initializer:
  random_state = _random_state(rng)

  def init(values: np.ndarray) -> None:
    fan_in, fan_out = _fans(values.shape)
    limit = np.sqrt(6.0 / (fan_in + fan_out))
    values[...] = random_state.uniform(-limit, limit, size=values.shape)

  return init
