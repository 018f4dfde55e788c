"""
Gradient check for a small classifier graph.

Builds
  loss = cross_entropy(dot(dropout(tanh(dot(x, W1) + b1)), W2) + b2, y)
with a batch-size placeholder on `x` and `y`, runs one forward/backward pass
and compares every parameter gradient with central finite differences.
Exits with status 1 when any parameter is outside tolerance.
"""

import argparse
import sys

import numpy as np

from adgraph.core import initializers
from adgraph.core.graph import Graph
from adgraph.core.shape import BATCH
from adgraph.utils.common import add_graph_arguments, configure_logging, load_config, log_message


def build_classifier(args) -> tuple[Graph, dict]:
  graph = Graph(seed=args.seed, name="gradcheck")
  init_stream = np.random.default_rng(args.seed)
  x = graph.input(shape=(BATCH, args.features), name="x")
  y = graph.input(shape=(BATCH, args.classes), name="y")
  w1 = graph.param(
    shape=(args.features, args.hidden),
    init=initializers.glorot_uniform(init_stream),
    name="W1",
  )
  b1 = graph.param(shape=(1, args.hidden), init=initializers.zeros(), name="b1")
  w2 = graph.param(
    shape=(args.hidden, args.classes),
    init=initializers.glorot_uniform(init_stream),
    name="W2",
  )
  b2 = graph.param(shape=(1, args.classes), init=initializers.zeros(), name="b2")
  hidden = graph.tanh(graph.plus(graph.dot(x, w1), b1), name="hidden")
  if args.dropout_probability > 0.0:
    hidden = graph.dropout(hidden, p=args.dropout_probability, name="hidden_dropout")
  logits = graph.plus(graph.dot(hidden, w2), b2, name="logits")
  loss = graph.cross_entropy(logits, y, name="loss")
  return graph, {"x": x, "y": y, "loss": loss}


def evaluate_loss(graph: Graph, loss, seed: int) -> float:
  graph.forward(np.random.default_rng(seed))
  return float(loss.value().data.astype(np.float64).sum())


def check_gradients(args) -> bool:
  graph, handles = build_classifier(args)
  graph.allocate(args.batch_size)
  log_message(f"Built graph with {len(graph)} nodes")
  log_message(graph.summary().replace("\n", "\n    "), "DEBUG", indent=1)

  data_stream = np.random.default_rng(args.seed + 1)
  handles["x"].set_value(data_stream.standard_normal((args.batch_size, args.features)))
  labels = data_stream.integers(0, args.classes, size=args.batch_size)
  handles["y"].set_value(np.eye(args.classes, dtype=np.float32)[labels])

  loss = handles["loss"]
  loss_value = evaluate_loss(graph, loss, args.seed)
  graph.backward(loss)
  log_message(f"Loss: {loss_value:.6f}")

  all_within_tolerance = True
  for parameter in graph.params():
    analytic = parameter.gradient().data.astype(np.float64)
    values = parameter.value().data
    numerical = np.zeros_like(analytic)
    for index in np.ndindex(values.shape):
      original_value = values[index]
      values[index] = original_value + args.epsilon
      loss_plus = evaluate_loss(graph, loss, args.seed)
      values[index] = original_value - args.epsilon
      loss_minus = evaluate_loss(graph, loss, args.seed)
      values[index] = original_value
      numerical[index] = (loss_plus - loss_minus) / (2 * args.epsilon)
    difference = np.abs(analytic - numerical)
    tolerance = args.atol + args.rtol * np.abs(numerical)
    worst_relative = float(np.max(difference / (np.abs(numerical) + 1e-12)))
    passed = bool(np.all(difference <= tolerance))
    all_within_tolerance &= passed
    log_message(
      f"{parameter.name}: max abs error {difference.max():.3g}, "
      f"max rel error {worst_relative:.3g} ({'ok' if passed else 'MISMATCH'})",
      "INFO" if passed else "ERROR",
      indent=1,
    )
  return all_within_tolerance


def main(argv=None) -> int:
  parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
  parser.add_argument("--config", type=str, default="config.jsonc")
  known_args, _ = parser.parse_known_args(argv)
  parser = add_graph_arguments(parser, load_config(known_args.config))
  args = parser.parse_args(argv)
  configure_logging(args.log_level, args.console_log_file)
  log_message("Starting gradient check")
  passed = check_gradients(args)
  log_message("Gradient check passed." if passed else "Gradient check failed.")
  return 0 if passed else 1


if __name__ == "__main__":
  sys.exit(main())
