"""
The graph driver: an arena that owns every node and runs the passes.

Ordering contract
A node can only be built from nodes that are already in the arena, so the
arena's construction order is a topological order: every parent index is
smaller than the index of each of its children. Forward and allocation walk
the arena front to back, backward walks it strictly back to front, which
guarantees that every consumer of a node has added its contribution to that
node's gradient before the node's own `backward` runs.

Typical iteration:
  graph.allocate(batch_size)
  x.set_value(batch)
  graph.forward()
  graph.backward(loss)     # zero all gradients, seed `loss` with 1, reverse pass
"""

from __future__ import annotations

from typing import Callable, Iterator, Optional, Type

import numpy as np

from ..utils.common import log_message
from .errors import GraphError, GraphOrderError
from .node import ConstantNode, InputNode, Node, NodeConfig, ParamNode
from .ops import (
  ArgmaxNodeOp,
  CrossEntropyNodeOp,
  DivNodeOp,
  DotNodeOp,
  DropoutNodeOp,
  ExpNodeOp,
  LogitNodeOp,
  LogNodeOp,
  MinusNodeOp,
  MultNodeOp,
  NegNodeOp,
  PlusNodeOp,
  ReLUNodeOp,
  SoftmaxNodeOp,
  TanhNodeOp,
)
from .shape import format_shape


class Graph:
  def __init__(self, seed: Optional[int] = None, name: str = "graph"):
    self.name = name
    self.nodes: list[Node] = []
    self.seed = seed
    self.rng = np.random.default_rng(seed)
    self.batch_size: Optional[int] = None

  def __len__(self):
    return len(self.nodes)

  def __iter__(self) -> Iterator[Node]:
    return iter(self.nodes)

  def __getitem__(self, index: int) -> Node:
    return self.nodes[index]

  def __repr__(self):
    return f"Graph(name={self.name!r}, nodes={len(self.nodes)}, batch_size={self.batch_size})"

  def add(self, node: Node) -> Node:
    if node.index is not None:
      raise GraphOrderError(f"Node '{node.name}' is already part of a graph")
    if node.graph is not None and node.graph is not self:
      raise GraphOrderError(f"Node '{node.name}' references nodes of another graph")
    node.graph = self
    node.index = len(self.nodes)
    self.nodes.append(node)
    return node

  def topological_order(self) -> list[Node]:
    for node in self.nodes:
      if node.graph is not self:
        raise GraphOrderError(f"Node '{node.name}' is not owned by graph '{self.name}'")
      for parent_index in node.parent_indices:
        if parent_index >= node.index:
          raise GraphOrderError(
            f"Node '{node.name}' (index {node.index}) depends on later node "
            f"index {parent_index}"
          )
    return list(self.nodes)

  def params(self) -> list[ParamNode]:
    return [node for node in self.nodes if isinstance(node, ParamNode)]

  def inputs(self) -> list[InputNode]:
    return [node for node in self.nodes if isinstance(node, InputNode)]

  def _run(self, stage: str, nodes: list[Node], step: Callable[[Node], None]) -> None:
    for node in nodes:
      try:
        step(node)
      except GraphError as error:
        log_message(f"{stage} failed at {node.kind} '{node.name}': {error}", "ERROR")
        raise

  def allocate(self, batch_size: int) -> None:
    if batch_size != self.batch_size:
      log_message(
        f"Resolving {len(self.nodes)} node shapes of '{self.name}' for batch size {batch_size}",
        "DEBUG",
      )
    self._run("allocate", self.topological_order(), lambda node: node.allocate(batch_size))
    self.batch_size = batch_size

  def forward(self, rng: Optional[np.random.Generator] = None) -> None:
    random_state = self.rng if rng is None else rng
    self._run("forward", self.topological_order(), lambda node: node.forward(random_state))

  def zero_gradients(self) -> None:
    for node in self.nodes:
      node.zero_gradient()

  def backward(self, output: Optional[Node] = None) -> None:
    if not self.nodes:
      raise GraphError(f"Graph '{self.name}' is empty")
    output = self.nodes[-1] if output is None else output
    if output.graph is not self:
      raise GraphOrderError(f"Output '{output.name}' is not part of graph '{self.name}'")
    order = self.topological_order()
    for node in order:
      if node is not output:
        node.zero_gradient()
    output.initialize_output_gradient()
    self._run("backward", list(reversed(order)), lambda node: node.backward())

  def graphviz(self) -> str:
    fragments = [f'digraph "{self.name}" {{\n']
    for node in self.nodes:
      fragments.append(node.graphviz())
    fragments.append("}\n")
    return "".join(fragments)

  def summary(self) -> str:
    lines = []
    for node in self.nodes:
      parents = ", ".join(str(index) for index in node.parent_indices)
      lines.append(
        f"{node.index:>3} {node.kind:<14} {node.name:<16} "
        f"{format_shape(node.shape):<14} [{parents}]"
      )
    return "\n".join(lines)

  def _config(self, kind: str, fields: dict) -> NodeConfig:
    fields.setdefault("name", f"{kind}_{len(self.nodes)}")
    return NodeConfig.build(**fields)

  def _build(self, kind: str, construct: Callable[[], Node]) -> Node:
    try:
      return self.add(construct())
    except GraphError as error:
      log_message(f"building {kind} node failed: {error}", "ERROR")
      raise

  def _leaf(self, node_class: Type[Node], fields: dict) -> Node:
    config = self._config(node_class.kind, fields)
    return self._build(node_class.kind, lambda: node_class(config))

  def _operator(self, node_class: Type[Node], parents: tuple[Node, ...], fields: dict) -> Node:
    for parent in parents:
      if parent.graph is not self:
        raise GraphOrderError(
          f"{node_class.kind}: parent '{parent.name}' is not part of graph '{self.name}'"
        )
    config = self._config(node_class.kind, fields)
    return self._build(node_class.kind, lambda: node_class(*parents, config))

  def input(self, **fields) -> InputNode:
    return self._leaf(InputNode, fields)

  def constant(self, **fields) -> ConstantNode:
    return self._leaf(ConstantNode, fields)

  def param(self, **fields) -> ParamNode:
    return self._leaf(ParamNode, fields)

  def logit(self, a: Node, **fields) -> LogitNodeOp:
    return self._operator(LogitNodeOp, (a,), fields)

  sigmoid = logit

  def tanh(self, a: Node, **fields) -> TanhNodeOp:
    return self._operator(TanhNodeOp, (a,), fields)

  def relu(self, a: Node, **fields) -> ReLUNodeOp:
    return self._operator(ReLUNodeOp, (a,), fields)

  def dropout(self, a: Node, **fields) -> DropoutNodeOp:
    return self._operator(DropoutNodeOp, (a,), fields)

  def softmax(self, a: Node, **fields) -> SoftmaxNodeOp:
    return self._operator(SoftmaxNodeOp, (a,), fields)

  def argmax(self, a: Node, **fields) -> ArgmaxNodeOp:
    return self._operator(ArgmaxNodeOp, (a,), fields)

  def log(self, a: Node, **fields) -> LogNodeOp:
    return self._operator(LogNodeOp, (a,), fields)

  def exp(self, a: Node, **fields) -> ExpNodeOp:
    return self._operator(ExpNodeOp, (a,), fields)

  def neg(self, a: Node, **fields) -> NegNodeOp:
    return self._operator(NegNodeOp, (a,), fields)

  def dot(self, a: Node, b: Node, **fields) -> DotNodeOp:
    return self._operator(DotNodeOp, (a, b), fields)

  def plus(self, a: Node, b: Node, **fields) -> PlusNodeOp:
    return self._operator(PlusNodeOp, (a, b), fields)

  def minus(self, a: Node, b: Node, **fields) -> MinusNodeOp:
    return self._operator(MinusNodeOp, (a, b), fields)

  def mult(self, a: Node, b: Node, **fields) -> MultNodeOp:
    return self._operator(MultNodeOp, (a, b), fields)

  def div(self, a: Node, b: Node, **fields) -> DivNodeOp:
    return self._operator(DivNodeOp, (a, b), fields)

  def cross_entropy(self, a: Node, b: Node, **fields) -> CrossEntropyNodeOp:
    return self._operator(CrossEntropyNodeOp, (a, b), fields)
