import os
import sys

import pytest

TESTS_DIR = os.path.dirname(__file__)
SRC_DIR = os.path.abspath(os.path.join(TESTS_DIR, os.pardir, "src"))
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)


@pytest.fixture(autouse=True)
def no_user_ssh_config(monkeypatch, tmp_path):
    """Keep the developer's ~/.ssh and Forwardfile settings out of the tests."""
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("FORWARD_ENV", raising=False)
    monkeypatch.delenv("FORWARDFILE", raising=False)
