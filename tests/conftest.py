import os
import sys
import json
import pytest
from types import SimpleNamespace

# The API module refuses to import without a key; no request ever reaches the model in tests
os.environ.setdefault("GEMINI_API_KEY", "test-key")

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))


def agent_output(payload):
    """Fake agent result as returned by run_agent_with_token_limit"""
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return SimpleNamespace(raw=None, final_output=text)


@pytest.fixture
def sample_files():
    from Code_Fixer.schemas import FileInput
    return [
        FileInput(name="A.py", content="code-A"),
        FileInput(name="B.py", content="code-B"),
    ]


@pytest.fixture(autouse=True)
def clear_in_flight():
    from Code_Fixer import functions
    functions.in_flight_actions.clear()
    yield
    functions.in_flight_actions.clear()
