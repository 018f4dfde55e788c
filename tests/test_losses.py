import numpy as np
import pytest
from numpy.random import randn

from adgraph.core.errors import ShapeMismatchError
from adgraph.core.graph import Graph
from adgraph.core.shape import BATCH
from tests.utils import assertion, finite_difference_gradients, graph_gradients


def _softmax(z: np.ndarray) -> np.ndarray:
  shifted = np.exp(z - z.max(axis=1, keepdims=True))
  return shifted / shifted.sum(axis=1, keepdims=True)


def _cross_entropy(z: np.ndarray, targets: np.ndarray) -> np.ndarray:
  return -(targets * np.log(_softmax(z))).sum(axis=1, keepdims=True)


def _one_hot(batch: int, classes: int) -> np.ndarray:
  return np.eye(classes, dtype=np.float32)[np.random.randint(0, classes, size=batch)]


@pytest.mark.parametrize("batch,classes", [(9, 4), (6, 8)])
def test_cross_entropy_grad(batch, classes):
  logits = randn(batch, classes).astype(np.float32)
  targets = np.random.dirichlet(np.ones(classes), size=batch).astype(np.float32)
  row_weights = randn(batch, 1)
  value, (logits_gradient, targets_gradient) = graph_gradients(
    lambda graph, z, y: graph.cross_entropy(z, y), [logits, targets], row_weights
  )
  numerical_logits, numerical_targets = finite_difference_gradients(
    lambda z, y: (_cross_entropy(z, y) * row_weights).sum(),
    [logits.astype(np.float64), targets.astype(np.float64)],
  )
  assert value.shape == (batch, 1)
  assertion(value, _cross_entropy(logits.astype(np.float64), targets), name="value")
  assertion(logits_gradient, numerical_logits, name="logits")
  assertion(targets_gradient, numerical_targets, name="targets")


@pytest.mark.parametrize("batch,classes", [(5, 3), (2, 10)])
def test_cross_entropy_closed_form_gradient(batch, classes):
  logits = randn(batch, classes).astype(np.float32)
  targets = _one_hot(batch, classes)
  _, (logits_gradient, targets_gradient) = graph_gradients(
    lambda graph, z, y: graph.cross_entropy(z, y), [logits, targets]
  )
  probabilities = _softmax(logits.astype(np.float64))
  assertion(logits_gradient, probabilities - targets, name="logits")
  assertion(targets_gradient, -np.log(probabilities), name="targets")


def test_cross_entropy_large_logits_stay_finite():
  logits = np.array([[200.0, 0.0, 0.0], [0.0, 250.0, 10.0]], dtype=np.float32)
  targets = np.array([[1.0, 0.0, 0.0], [0.0, 0.0, 1.0]], dtype=np.float32)
  value, (logits_gradient, targets_gradient) = graph_gradients(
    lambda graph, z, y: graph.cross_entropy(z, y), [logits, targets]
  )
  assert np.all(np.isfinite(value))
  assert np.all(np.isfinite(logits_gradient))
  assert np.all(np.isfinite(targets_gradient))
  assertion(value, np.array([[0.0], [240.0]]), name="value")
  assertion(logits_gradient, np.array([[0.0, 0.0, 0.0], [0.0, 1.0, -1.0]]), name="logits")
  assertion(
    targets_gradient, np.array([[0.0, 200.0, 200.0], [250.0, 0.0, 240.0]]), name="targets"
  )


def test_cross_entropy_reuses_cached_probabilities():
  graph = Graph()
  z = graph.input(shape=(BATCH, 3), name="z")
  y = graph.input(shape=(BATCH, 3), name="y")
  loss = graph.cross_entropy(z, y)
  graph.allocate(2)
  logits = randn(2, 3).astype(np.float32)
  targets = _one_hot(2, 3)
  z.set_value(logits)
  y.set_value(targets)

  graph.forward()
  cached = loss.probabilities.data
  graph.forward()
  assert loss.probabilities.data is cached

  z.value().set(0.0)
  graph.backward(loss)
  assertion(z.gradient().data, _softmax(logits.astype(np.float64)) - targets)


def test_cross_entropy_requires_matching_shapes():
  graph = Graph()
  with pytest.raises(ShapeMismatchError, match="cross entropy"):
    graph.cross_entropy(graph.param(shape=(4, 3)), graph.param(shape=(4, 2)))


def test_cross_entropy_accepts_batch_placeholder_on_both_operands():
  graph = Graph()
  loss = graph.cross_entropy(graph.input(shape=(BATCH, 5)), graph.input(shape=(BATCH, 5)))
  assert loss.shape == (BATCH, 1)
  graph.allocate(7)
  assert loss.shape == (7, 1)
  assert loss.probabilities.allocated is False
