"""
Failures raised while building or running a graph.

∘ ShapeMismatchError  –  an operator cannot derive its output shape from its parents.
∘ MissingShapeError   –  a leaf was declared without `shape` or `lazy_shape`.
∘ UnallocatedError    –  `value()`/`gradient()` read before storage exists.
∘ GraphOrderError     –  a node references a parent that is not earlier in the arena.

None of them is retried: the graph driver logs and re-raises.
"""


class GraphError(Exception):
  pass


class ShapeMismatchError(GraphError, ValueError):
  pass


class MissingShapeError(GraphError, ValueError):
  pass


class UnallocatedError(GraphError, RuntimeError):
  pass


class GraphOrderError(GraphError, RuntimeError):
  pass
