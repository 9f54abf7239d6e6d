import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Keep app imports from touching real services or writing log files
os.environ["LOG_FILE"] = ""
os.environ["REDIS_URL"] = ""
os.environ["API_TOKEN"] = ""

from graph.runner import StageRunner
from tools.lead_store import InMemoryLeadStore
from tools.settings import Settings
from fakes import FakeJobClient, FakeLLM, SleepRecorder


@pytest.fixture
def settings():
    return Settings(apify_token="test-token", openai_api_key="test-key")


@pytest.fixture
def store():
    return InMemoryLeadStore()


@pytest.fixture
def make_runner(settings, store):
    """Factory for StageRunners wired to fakes; sleeping is recorded, not done."""
    def _make(jobs=None, llm=None, runner_store=None):
        return StageRunner(
            jobs=jobs or FakeJobClient(),
            store=runner_store or store,
            llm=llm or FakeLLM(),
            settings=settings,
            sleep=SleepRecorder(),
        )
    return _make
