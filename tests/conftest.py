import random

import numpy as np
import pytest

from adgraph.utils.common import configure_logging

SEED = 42


def pytest_configure():
  random.seed(SEED)
  np.random.seed(SEED)


@pytest.fixture(autouse=True)
def reset_logging():
  configure_logging("INFO")
  yield
  configure_logging("INFO")
