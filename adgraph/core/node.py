"""
The vertex contract every graph node follows, and the three kinds of sources.

A node owns two tensors:
∘ value     –  written by `forward()` (or supplied from outside for sources),
∘ gradient  –  the adjoint ∂ℒ/∂value, accumulated into by every consumer.

Per iteration a node goes
  unallocated → allocated → forward computed → gradient zeroed/seeded → backward computed
and starts again at "allocated" for the next batch. Storage is reused across
iterations; it is only recreated when the resolved shape changes.

Nodes never own their parents. They hold the parents' indices into the graph
arena (`Graph.nodes`) and look them up there.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence

import numpy as np

from ..utils.common import log_message
from .errors import GraphOrderError, MissingShapeError, UnallocatedError
from .shape import Shape, as_shape, follows, format_shape, resolve_shape
from .tensor import Tensor

if TYPE_CHECKING:
  from .graph import Graph


@dataclass(frozen=True)
class NodeConfig:
  """
  Everything a node can be configured with. Unknown fields are rejected at
  construction, leaves must carry `shape` or `lazy_shape`.

  shape       –  declared shape, may contain the `BATCH` placeholder.
  value       –  constant fill (scalar or array broadcastable to the shape).
  lazy_shape  –  called at allocation; its result overrides the resolved shape.
  lazy_value  –  called at allocation; its result fills the value tensor.
  name        –  display name.
  init        –  parameter initializer, called once with the value array.
  p           –  dropout probability.
  """

  shape: Optional[Shape] = None
  value: Any = None
  lazy_shape: Optional[Callable[[], Shape]] = None
  lazy_value: Optional[Callable[[], Any]] = None
  name: str = "none"
  init: Optional[Callable[[np.ndarray], None]] = None
  p: Optional[float] = None

  @classmethod
  def build(cls, **fields) -> "NodeConfig":
    if fields.get("shape") is not None:
      fields["shape"] = as_shape(fields["shape"])
    return cls(**fields)

  @property
  def has_shape(self) -> bool:
    return self.shape is not None or self.lazy_shape is not None

  def require_shape(self, kind: str) -> "NodeConfig":
    if not self.has_shape:
      raise MissingShapeError(f"{kind} node '{self.name}' requires shape information")
    return self


class Node:
  kind = "node"
  style = 'shape="box"'
  label = "node"

  def __init__(self, config: NodeConfig, parents: Sequence["Node"] = ()):
    self.config = config
    self.graph: Optional["Graph"] = None
    self.index: Optional[int] = None

    for parent in parents:
      if parent.index is None or parent.graph is None:
        raise GraphOrderError(
          f"{self.kind} '{config.name}': parent '{parent.name}' is not part of a graph"
        )
    owners = {id(parent.graph) for parent in parents}
    if len(owners) > 1:
      raise GraphOrderError(
        f"{self.kind} '{config.name}': parents belong to different graphs"
      )
    if parents:
      self.graph = parents[0].graph
    self.parent_indices: tuple[int, ...] = tuple(parent.index for parent in parents)

    self._declared_shape: Shape = config.shape if config.shape is not None else (1, 1)
    self._shape: Shape = self._declared_shape
    self._value = Tensor(name=f"{config.name}.value")
    self._gradient = Tensor(name=f"{config.name}.gradient")

  def __repr__(self):
    return (
      f"{type(self).__name__}(name={self.name!r}, index={self.index}, "
      f"shape={format_shape(self.shape)})"
    )

  @property
  def name(self) -> str:
    return self.config.name

  @property
  def shape(self) -> Shape:
    return self._shape

  @property
  def parents(self) -> tuple["Node", ...]:
    if not self.parent_indices:
      return ()
    return tuple(self.graph.nodes[index] for index in self.parent_indices)

  def _resolve(self, batch_size: int) -> Shape:
    shape = resolve_shape(self._declared_shape, batch_size)
    if self.config.lazy_shape is not None:
      shape = as_shape(self.config.lazy_shape())
    return shape

  def allocate(self, batch_size: int) -> None:
    shape = self._resolve(batch_size)
    self._shape = shape
    if self.config.lazy_value is not None:
      fill = self.config.lazy_value
    else:
      fill = self.config.value
    self._value.allocate(shape, fill)

  def forward(self, rng: Optional[np.random.Generator] = None) -> None:
    raise NotImplementedError

  def backward(self) -> None:
    raise NotImplementedError

  def _fill_gradient(self, value: float) -> None:
    if not self._gradient.allocate(self._shape, value):
      self._gradient.set(value)

  def initialize_output_gradient(self) -> None:
    self._fill_gradient(1.0)

  def zero_gradient(self) -> None:
    self._fill_gradient(0.0)

  def value(self) -> Tensor:
    if not self._value:
      raise UnallocatedError(f"{self.kind} '{self.name}': value has not been allocated")
    return self._value

  def gradient(self) -> Tensor:
    if not self._gradient:
      raise UnallocatedError(
        f"{self.kind} '{self.name}': gradient has not been allocated"
      )
    return self._gradient

  @property
  def vertex_id(self) -> str:
    return f'"n{self.index}"'

  def graphviz(self) -> str:
    lines = [f'{self.vertex_id} [{self.style}, label="{self.label}"]']
    for parent in self.parents:
      lines.append(f"{parent.vertex_id} -> {self.vertex_id}")
    return "\n".join(lines) + "\n\n"


class InputNode(Node):
  """
  Data source. Its value is replaced from outside before every forward pass.

  The declared shape keeps its `BATCH` placeholder. A supplied value that is
  just the declared shape at another batch size is dropped when `allocate`
  resolves a new batch size; a value of any other shape sticks until replaced.
  """

  kind = "input"
  style = 'shape="parallelogram", style="filled", fillcolor="lawngreen"'
  label = "input"

  def __init__(self, config: NodeConfig):
    super().__init__(config.require_shape(self.kind))
    self._supplied = False

  def set_value(self, array) -> None:
    self._value.assign(array)
    self._shape = self._value.shape
    self._supplied = True

  def allocate(self, batch_size: int) -> None:
    if self._supplied:
      supplied = self._value.shape
      if supplied == self._resolve(batch_size) or not follows(
        supplied, self._declared_shape
      ):
        self._shape = supplied
        return
      self._supplied = False
    super().allocate(batch_size)

  def forward(self, rng=None):
    pass

  def backward(self):
    pass


class ConstantNode(Node):
  kind = "constant"
  style = 'shape="diamond"'
  label = "const"

  def __init__(self, config: NodeConfig):
    super().__init__(config.require_shape(self.kind))

  def forward(self, rng=None):
    pass

  def backward(self):
    pass


class ParamNode(Node):
  """
  Trainable source. `init` runs exactly once, on the first allocation; a
  later allocation (for a new batch size) keeps the values it produced.
  Gradients land here and stop.
  """

  kind = "param"
  style = 'shape="hexagon", style="filled", fillcolor="orangered"'
  label = "param"

  def __init__(self, config: NodeConfig):
    super().__init__(config.require_shape(self.kind))
    self.initialized = False

  def allocate(self, batch_size: int) -> None:
    previous_shape = self._value.shape if self._value else None
    super().allocate(batch_size)
    if not self.initialized:
      if self.config.init is not None:
        self.config.init(self._value.data)
      self.initialized = True
    elif previous_shape != self._value.shape:
      log_message(
        f"Parameter '{self.name}' reallocated from {format_shape(previous_shape)} "
        f"to {format_shape(self._value.shape)} without re-initialization",
        "WARN",
      )

  def forward(self, rng=None):
    pass

  def backward(self):
    pass
