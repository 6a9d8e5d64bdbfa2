"""
Shared pytest fixtures for all tests.
"""

import pytest
from datetime import datetime, timezone
from pathlib import Path

# Add the repo root to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from storyverse.config import PipelineSettings
from storyverse.db.job_store import JobStore
from storyverse.llm.gateway import MockGateway
from storyverse.llm.prompt_registry import PromptRegistry
from tests.fixtures.responses import load_all_responses


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def db_path(tmp_path):
    """Temporary database path for testing."""
    return tmp_path / "test_storyverse.db"


@pytest.fixture
def job_store(db_path):
    """Fresh job store with schema initialized."""
    store = JobStore(db_path)
    store.ensure_schema()
    return store


@pytest.fixture
def queued_job(job_store):
    """A freshly created medium-length job."""
    return job_store.create_job(story_length="medium", source_file_name="harbour.fountain")


# =============================================================================
# LLM Fixtures
# =============================================================================

@pytest.fixture
def mock_gateway():
    """Mock LLM gateway for testing without API calls."""
    return MockGateway()


@pytest.fixture
def loaded_gateway(mock_gateway):
    """Mock gateway answering every pipeline instruction."""
    return load_all_responses(mock_gateway)


@pytest.fixture
def prompt_registry():
    """Prompt registry pointing to actual prompts."""
    prompts_dir = Path(__file__).parent.parent / "storyverse" / "prompts"
    return PromptRegistry(prompts_dir)


@pytest.fixture
def settings():
    """Default pipeline settings."""
    return PipelineSettings()


# =============================================================================
# Clock Fixtures
# =============================================================================

@pytest.fixture
def fixed_now():
    """A fixed UTC instant for card scheduling."""
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
