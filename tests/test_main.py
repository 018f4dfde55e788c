import json

import pytest

import main


@pytest.fixture
def config_file(tmp_path):
  config_path = tmp_path / "config.jsonc"
  config_path.write_text(
    json.dumps(
      {
        "log_level": "INFO",
        "graph": {"seed": 5, "batch_size": 3, "dropout_probability": 0.0},
        "gradcheck": {
          "features": 4,
          "hidden": 5,
          "classes": 3,
          "epsilon": 1e-3,
          "rtol": 2e-2,
          "atol": 2e-3,
        },
        "paths": {"console_log_file": None},
      }
    )
  )
  return config_path


def test_gradient_check_passes(config_file, capsys):
  assert main.main(["--config", str(config_file)]) == 0
  output = capsys.readouterr().out
  assert "Gradient check passed." in output
  for name in ("W1", "b1", "W2", "b2"):
    assert f"{name}: max abs error" in output


def test_gradient_check_with_dropout(config_file):
  arguments = ["--config", str(config_file), "--dropout-probability", "0.3"]
  assert main.main(arguments) == 0


def test_classifier_shapes_follow_batch_size(config_file):
  parser = main.add_graph_arguments(
    main.argparse.ArgumentParser(), main.load_config(config_file)
  )
  args = parser.parse_args(["--batch-size", "6"])
  graph, handles = main.build_classifier(args)
  graph.allocate(args.batch_size)
  assert handles["x"].shape == (6, 4)
  assert handles["loss"].shape == (6, 1)
