"""
Operator nodes: the forward formula and the chain-rule contribution of every
differentiable operation in the graph.

Design
∘ Every operator derives its output shape from its parents' shapes through
  `shape_rule`, once at construction (so mismatches fail before anything is
  allocated) and again at allocation, against the resolved parent shapes.
∘ `backward` always *adds* into the parents' gradients. A node consumed by
  several children receives one contribution from each; the graph driver
  zeroes gradients before a backward pass.
∘ Elementwise binary operators accept a second operand that broadcasts onto
  the first; its contribution is summed back down to its own shape.

Unary:  logit (σ), tanh, ReLU, dropout, softmax, argmax, log, exp, neg.
Binary: dot, plus, minus, mult, div, cross_entropy.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from . import kernels
from .errors import ShapeMismatchError
from .node import Node, NodeConfig
from .shape import Shape, broadcasts_onto, dimensions_match, format_shape
from .tensor import Tensor


class OperatorNode(Node):
  kind = "operator"
  style = 'shape="box", style="filled", fillcolor="yellow"'

  def __init__(self, parents: tuple[Node, ...], config: Optional[NodeConfig] = None):
    config = config or NodeConfig()
    super().__init__(config, parents)
    derived_shape = self._derive_shape()
    if config.shape is not None and tuple(config.shape) != derived_shape:
      raise ShapeMismatchError(
        f"{self.kind} '{self.name}': declared shape {format_shape(config.shape)} "
        f"does not match derived shape {format_shape(derived_shape)}"
      )
    self._declared_shape = derived_shape
    self._shape = derived_shape

  def shape_rule(self, *parent_shapes: Shape) -> Shape:
    return parent_shapes[0]

  def _derive_shape(self) -> Shape:
    return tuple(self.shape_rule(*(parent.shape for parent in self.parents)))

  def _mismatch(self, message: str, *shapes: Shape) -> ShapeMismatchError:
    rendered = " and ".join(format_shape(shape) for shape in shapes)
    return ShapeMismatchError(f"{self.kind} '{self.name}': {message}, got {rendered}")

  def allocate(self, batch_size: int) -> None:
    self._declared_shape = self._derive_shape()
    super().allocate(batch_size)


class UnaryNodeOp(OperatorNode):
  def __init__(self, a: Node, config: Optional[NodeConfig] = None):
    super().__init__((a,), config)

  @property
  def a(self) -> Node:
    return self.graph.nodes[self.parent_indices[0]]


class LogitNodeOp(UnaryNodeOp):
  """
  Logistic sigmoid
  Forward σ(x)=1 ÷ (1+e^(−x))
  Backward ∂ℒ/∂x = ∂ℒ/∂y · σ(x) · (1−σ(x)), using the stored output
  """

  kind = "logit"
  label = "logit"

  def forward(self, rng=None):
    kernels.sigmoid(self.a.value().data, out=self._value.data)

  def backward(self):
    output = self._value.data
    gradient = self.a.gradient().data
    gradient += self._gradient.data * output * (1.0 - output)


class TanhNodeOp(UnaryNodeOp):
  """
  Tanh
  Forward tanh(x)=sinh(x) ÷ cosh(x)
  Backward ∂ℒ/∂x = ∂ℒ/∂y · (1−tanh²(x))
  """

  kind = "tanh"
  label = "tanh"

  def forward(self, rng=None):
    np.tanh(self.a.value().data, out=self._value.data)

  def backward(self):
    output = self._value.data
    gradient = self.a.gradient().data
    gradient += self._gradient.data * (1.0 - output * output)


class ReLUNodeOp(UnaryNodeOp):
  """
  ReLU
  Forward max(0, x)
  Backward ∂ℒ/∂x = ∂ℒ/∂y · 𝟙(x > 0), zero at x = 0
  """

  kind = "relu"
  label = "ReLU"

  def forward(self, rng=None):
    np.maximum(self.a.value().data, 0.0, out=self._value.data)

  def backward(self):
    input_array = self.a.value().data
    gradient = self.a.gradient().data
    gradient += self._gradient.data * (input_array > 0.0)


class DropoutNodeOp(UnaryNodeOp):
  """
  Zeroes each element with probability `p`, keeps it unscaled otherwise.
  The mask is drawn from the random stream handed to `forward`, so a run is
  reproducible from the seed of that stream alone.
  Backward passes the adjoint through wherever the output is non-zero.
  """

  kind = "dropout"
  default_probability = 0.5

  def __init__(self, a: Node, config: Optional[NodeConfig] = None):
    super().__init__(a, config)
    probability = self.config.p
    if probability is None:
      probability = self.default_probability
    if not 0.0 <= probability < 1.0:
      raise ValueError(
        f"dropout '{self.name}': probability must be in [0, 1), got {probability}"
      )
    self.probability = float(probability)

  @property
  def label(self) -> str:
    return f"Dropout({self.probability:g})"

  def forward(self, rng: Optional[np.random.Generator] = None):
    if rng is None:
      raise ValueError(f"dropout '{self.name}' needs a random stream to draw its mask")
    kernels.dropout(self._value.data, self.a.value().data, self.probability, rng)

  def backward(self):
    gradient = self.a.gradient().data
    gradient += self._gradient.data * (self._value.data != 0.0)


class SoftmaxNodeOp(UnaryNodeOp):
  """
  Row-wise softmax, max-subtracted before exponentiating.
  Backward is the Jacobian-vector product p ⊙ (adj − (p·adj)·1).
  """

  kind = "softmax"
  label = "softmax"

  def forward(self, rng=None):
    self._value.data[...] = self.a.value().data
    kernels.softmax(self._value.data)

  def backward(self):
    kernels.softmax_grad(self.a.gradient().data, self._gradient.data, self._value.data)


class ArgmaxNodeOp(UnaryNodeOp):
  """Index of each row's maximum, shape (rows, 1). Propagates no gradient."""

  kind = "argmax"
  label = "argmax"

  def shape_rule(self, a_shape: Shape) -> Shape:
    return tuple(a_shape[:-1]) + (1,)

  def forward(self, rng=None):
    kernels.argmax(self._value.data, self.a.value().data)

  def backward(self):
    pass


class LogNodeOp(UnaryNodeOp):
  """
  Natural log; the caller keeps the input positive.
  Backward ∂ℒ/∂x = ∂ℒ/∂y ÷ x
  """

  kind = "log"
  label = "log"

  def forward(self, rng=None):
    with np.errstate(divide="ignore", invalid="ignore"):
      np.log(self.a.value().data, out=self._value.data)

  def backward(self):
    with np.errstate(divide="ignore", invalid="ignore"):
      gradient = self.a.gradient().data
      gradient += self._gradient.data * (1.0 / self.a.value().data)


class ExpNodeOp(UnaryNodeOp):
  """
  Forward eˣ
  Backward ∂ℒ/∂x = ∂ℒ/∂y · eˣ, recomputed from the input
  """

  kind = "exp"
  label = "exp"

  def forward(self, rng=None):
    with np.errstate(over="ignore"):
      np.exp(self.a.value().data, out=self._value.data)

  def backward(self):
    with np.errstate(over="ignore", invalid="ignore"):
      gradient = self.a.gradient().data
      gradient += self._gradient.data * np.exp(self.a.value().data)


class NegNodeOp(UnaryNodeOp):
  kind = "neg"
  label = "-"

  def forward(self, rng=None):
    np.negative(self.a.value().data, out=self._value.data)

  def backward(self):
    gradient = self.a.gradient().data
    gradient -= self._gradient.data


class BinaryNodeOp(OperatorNode):
  def __init__(self, a: Node, b: Node, config: Optional[NodeConfig] = None):
    super().__init__((a, b), config)

  @property
  def a(self) -> Node:
    return self.graph.nodes[self.parent_indices[0]]

  @property
  def b(self) -> Node:
    return self.graph.nodes[self.parent_indices[1]]


class DotNodeOp(BinaryNodeOp):
  """
  Matrix product Y = A · B

  The backward pass accumulates into both operands:
  ∂ℒ/∂A += ∂ℒ/∂Y · Bᵀ
  ∂ℒ/∂B += Aᵀ · ∂ℒ/∂Y
  (β = 1 in the product, so contributions from other consumers are kept.)
  """

  kind = "dot"
  style = 'shape="box", style="filled", fillcolor="orange"'
  label = "×"

  def shape_rule(self, a_shape: Shape, b_shape: Shape) -> Shape:
    if len(a_shape) != 2 or len(b_shape) != 2:
      raise self._mismatch("matrix product requires two-dimensional operands", a_shape, b_shape)
    if not dimensions_match(a_shape[1], b_shape[0]):
      raise self._mismatch("matrix product requires dimensions to match", a_shape, b_shape)
    return (a_shape[0], b_shape[1])

  def forward(self, rng=None):
    kernels.prod(self._value.data, self.a.value().data, self.b.value().data)

  def backward(self):
    adjoint = self._gradient.data
    kernels.prod(
      self.a.gradient().data, adjoint, self.b.value().data, False, True, beta=1.0
    )
    kernels.prod(
      self.b.gradient().data, self.a.value().data, adjoint, True, False, beta=1.0
    )


class ElementwiseNodeOp(BinaryNodeOp):
  def shape_rule(self, a_shape: Shape, b_shape: Shape) -> Shape:
    if not broadcasts_onto(b_shape, a_shape):
      raise self._mismatch(
        "second operand must broadcast onto the first", a_shape, b_shape
      )
    return a_shape


class PlusNodeOp(ElementwiseNodeOp):
  kind = "plus"
  label = "+"

  def forward(self, rng=None):
    np.add(self.a.value().data, self.b.value().data, out=self._value.data)

  def backward(self):
    adjoint = self._gradient.data
    kernels.accumulate(self.a.gradient().data, adjoint)
    kernels.accumulate(self.b.gradient().data, adjoint)


class MinusNodeOp(ElementwiseNodeOp):
  kind = "minus"
  label = "-"

  def forward(self, rng=None):
    np.subtract(self.a.value().data, self.b.value().data, out=self._value.data)

  def backward(self):
    adjoint = self._gradient.data
    kernels.accumulate(self.a.gradient().data, adjoint)
    kernels.accumulate(self.b.gradient().data, -adjoint)


class MultNodeOp(ElementwiseNodeOp):
  kind = "mult"
  label = "•"

  def forward(self, rng=None):
    np.multiply(self.a.value().data, self.b.value().data, out=self._value.data)

  def backward(self):
    adjoint = self._gradient.data
    left_operand, right_operand = self.a.value().data, self.b.value().data
    kernels.accumulate(self.a.gradient().data, adjoint * right_operand)
    kernels.accumulate(self.b.gradient().data, adjoint * left_operand)


class DivNodeOp(ElementwiseNodeOp):
  """
  Forward a ÷ b, no guard against b = 0
  Backward ∂ℒ/∂a += ∂ℒ/∂y ÷ b,  ∂ℒ/∂b −= ∂ℒ/∂y · a ÷ b²
  """

  kind = "div"
  label = "÷"

  def forward(self, rng=None):
    with np.errstate(divide="ignore", invalid="ignore"):
      np.divide(self.a.value().data, self.b.value().data, out=self._value.data)

  def backward(self):
    adjoint = self._gradient.data
    numerator, denominator = self.a.value().data, self.b.value().data
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
      kernels.accumulate(self.a.gradient().data, adjoint / denominator)
      kernels.accumulate(
        self.b.gradient().data,
        -adjoint * numerator / (denominator * denominator),
      )


class CrossEntropyNodeOp(BinaryNodeOp):
  """
  ℓ = −Σ_row b ⊙ log(softmax(a)), one value per row.

  log p comes from the max-shifted logits, so it stays finite where p itself
  underflows to 0. Both are cached by `forward` and reused by `backward`:
  ∂ℒ/∂a += adj_row ⊙ (p − b)
  ∂ℒ/∂b += adj_row ⊙ (−log p)
  """

  kind = "cross_entropy"
  label = "cross_entropy"

  def __init__(self, a: Node, b: Node, config: Optional[NodeConfig] = None):
    super().__init__(a, b, config)
    self._probabilities = Tensor(name=f"{self.name}.probabilities")
    self._log_probabilities = Tensor(name=f"{self.name}.log_probabilities")

  def shape_rule(self, a_shape: Shape, b_shape: Shape) -> Shape:
    if len(a_shape) != len(b_shape) or not all(
      dimensions_match(left, right) for left, right in zip(a_shape, b_shape)
    ):
      raise self._mismatch("cross entropy requires dimensions to match", a_shape, b_shape)
    return tuple(a_shape[:-1]) + (1,)

  @property
  def probabilities(self) -> Tensor:
    return self._probabilities

  def forward(self, rng=None):
    logits = self.a.value().data
    self._probabilities.allocate(logits.shape)
    self._log_probabilities.allocate(logits.shape)
    log_probabilities = self._log_probabilities.data
    log_probabilities[...] = logits
    kernels.log_softmax(log_probabilities)
    np.exp(log_probabilities, out=self._probabilities.data)
    result = -self.b.value().data * log_probabilities
    kernels.sum_rowwise(result, self._value.data)

  def backward(self):
    probabilities = self._probabilities.data
    adjoint = self._gradient.data

    result = probabilities - self.b.value().data
    kernels.scale_rowwise(result, adjoint)
    gradient = self.a.gradient().data
    gradient += result

    result = -self._log_probabilities.data
    kernels.scale_rowwise(result, adjoint)
    gradient = self.b.gradient().data
    gradient += result
