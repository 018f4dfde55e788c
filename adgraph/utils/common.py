import argparse
import json
import re
import time
from pathlib import Path

VALID_LEVELS = ("DEBUG", "INFO", "WARN", "ERROR")

_log_state = {
  "start_time": time.time(),
  "minimum_level": "INFO",
  "console_log_file": None,
}


def load_config(config_path: str | Path = "config.jsonc") -> dict:
  raw_text = Path(config_path).read_text()
  cleaned_text = re.sub(r"//.*?\n|/\*.*?\*/", "", raw_text, flags=re.S)
  return json.loads(cleaned_text)


def configure_logging(
  level: str = "INFO", console_log_file: str | Path | None = None
) -> None:
  """Reset the elapsed-time origin, the minimum level, and the optional log file."""
  if level not in VALID_LEVELS:
    raise ValueError(f"Invalid log level: '{level}'. Must be one of {VALID_LEVELS}")
  _log_state["start_time"] = time.time()
  _log_state["minimum_level"] = level
  _log_state["console_log_file"] = Path(console_log_file) if console_log_file else None


def log_message(message: str, level: str = "INFO", indent: int = 0) -> None:
  if level not in VALID_LEVELS:
    raise ValueError(f"Invalid log level: '{level}'. Must be one of {VALID_LEVELS}")
  if VALID_LEVELS.index(level) < VALID_LEVELS.index(_log_state["minimum_level"]):
    return
  elapsed_time_seconds = time.time() - _log_state["start_time"]
  time_string = time.strftime("%H:%M:%S", time.gmtime(elapsed_time_seconds))
  indentation = " " * (indent * 2)
  formatted_log_message = f"{indentation}○ [{level}] {time_string} ∘ {message}"
  print(formatted_log_message)
  console_log_file = _log_state["console_log_file"]
  if console_log_file:
    with open(console_log_file, "a") as file_handle:
      file_handle.write(formatted_log_message + "\n")


def add_graph_arguments(
  parser: argparse.ArgumentParser, config: dict | None = None
) -> argparse.ArgumentParser:
  config = config if config is not None else load_config()
  graph_section = config.get("graph", {})
  check_section = config.get("gradcheck", {})
  path_section = config.get("paths", {})
  parser.add_argument("--seed", type=int, default=graph_section.get("seed", 42))
  parser.add_argument(
    "--batch-size", type=int, default=graph_section.get("batch_size", 4)
  )
  parser.add_argument(
    "--dropout-probability",
    type=float,
    default=graph_section.get("dropout_probability", 0.0),
  )
  parser.add_argument("--features", type=int, default=check_section.get("features", 5))
  parser.add_argument("--hidden", type=int, default=check_section.get("hidden", 6))
  parser.add_argument("--classes", type=int, default=check_section.get("classes", 3))
  parser.add_argument(
    "--epsilon", type=float, default=check_section.get("epsilon", 1e-3)
  )
  parser.add_argument("--rtol", type=float, default=check_section.get("rtol", 1e-2))
  parser.add_argument("--atol", type=float, default=check_section.get("atol", 1e-3))
  parser.add_argument(
    "--log-level", type=str, default=config.get("log_level", "INFO"), choices=VALID_LEVELS
  )
  parser.add_argument(
    "--console-log-file",
    type=str,
    default=path_section.get("console_log_file", None),
  )
  return parser
