"""
Numeric primitives the operator nodes call into.

Everything works on `np.ndarray` buffers already owned by a node; results are
written into a destination in place so that node storage keeps its identity.

∘ sigmoid        –  σ(x) = 1 ÷ (1 + e^(−x)), split by sign so e^(·) never overflows.
∘ softmax        –  row-wise, exp(z − max z) ÷ Σ exp(z − max z).
∘ softmax_grad   –  g += p ⊙ (adj − (p·adj)·1) per row.
∘ prod           –  C = op(A) · op(B) + β·C, op ∈ {identity, transpose}.
∘ sum_rowwise    –  (rows, cols) → (rows, 1).
∘ scale_rowwise  –  multiply every row by its own scalar.
∘ dropout        –  zero elements with probability p drawn from an explicit stream.
∘ argmax         –  (rows, cols) → (rows, 1) holding column indices.
∘ accumulate     –  g += contribution, summing away broadcast axes first.

"Rows" is every axis but the last.
"""

from __future__ import annotations

import numpy as np


def unbroadcast(
  gradient_array: np.ndarray, target_shape: tuple[int, ...]
) -> np.ndarray:
  while gradient_array.ndim > len(target_shape):
    gradient_array = gradient_array.sum(axis=0)
  for axis_index, size in enumerate(target_shape):
    if size == 1 and gradient_array.shape[axis_index] != 1:
      gradient_array = gradient_array.sum(axis=axis_index, keepdims=True)
  return gradient_array


def accumulate(gradient: np.ndarray, contribution: np.ndarray) -> None:
  gradient += unbroadcast(contribution, gradient.shape)


def sigmoid(x: np.ndarray, out: np.ndarray | None = None) -> np.ndarray:
  positive_mask = x >= 0
  negative_mask = ~positive_mask
  exp_values = np.zeros_like(x)
  exp_values[positive_mask] = np.exp(-x[positive_mask])
  exp_values[negative_mask] = np.exp(x[negative_mask])
  numerator = np.ones_like(x)
  numerator[negative_mask] = exp_values[negative_mask]
  result = numerator / (1.0 + exp_values)
  if out is None:
    return result
  out[...] = result
  return out


def softmax(values: np.ndarray) -> np.ndarray:
  """In place: shifted by the row max first, so large logits do not overflow."""
  values -= np.max(values, axis=-1, keepdims=True)
  np.exp(values, out=values)
  values /= np.sum(values, axis=-1, keepdims=True)
  return values


def log_softmax(values: np.ndarray) -> np.ndarray:
  """In place: z − max − log Σ exp(z − max), finite for any finite row."""
  values -= np.max(values, axis=-1, keepdims=True)
  values -= np.log(np.sum(np.exp(values), axis=-1, keepdims=True))
  return values


def softmax_grad(
  gradient: np.ndarray, adjoint: np.ndarray, probabilities: np.ndarray
) -> None:
  """
  Jacobian-vector product of softmax, accumulated into `gradient`:
  J · dy = p ⊙ (dy − (pᵀdy)·1), see Martins & Astudillo, ICML 2016, sec. 2.5.
  """
  row_dot = np.sum(probabilities * adjoint, axis=-1, keepdims=True)
  gradient += probabilities * (adjoint - row_dot)


def prod(
  out: np.ndarray,
  matrix_a: np.ndarray,
  matrix_b: np.ndarray,
  transpose_a: bool = False,
  transpose_b: bool = False,
  beta: float = 0.0,
) -> np.ndarray:
  left = matrix_a.swapaxes(-1, -2) if transpose_a else matrix_a
  right = matrix_b.swapaxes(-1, -2) if transpose_b else matrix_b
  product = np.matmul(left, right)
  if beta == 0.0:
    out[...] = product
  else:
    out *= beta
    out += product
  return out


def sum_rowwise(source: np.ndarray, out: np.ndarray) -> np.ndarray:
  np.sum(source, axis=-1, keepdims=True, out=out)
  return out


def scale_rowwise(values: np.ndarray, scale: np.ndarray) -> np.ndarray:
  values *= scale.reshape(values.shape[:-1] + (1,))
  return values


def dropout(
  out: np.ndarray,
  source: np.ndarray,
  probability: float,
  random_state: np.random.Generator,
) -> np.ndarray:
  keep_mask = random_state.random(source.shape) >= probability
  np.multiply(source, keep_mask, out=out)
  return out


def argmax(out: np.ndarray, source: np.ndarray) -> np.ndarray:
  out[...] = np.argmax(source, axis=-1)[..., np.newaxis]
  return out
