"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests.
"""

import os
import sys
import pytest
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment
os.environ["APP_ENV"] = "test"
os.environ["AWS_REGION"] = "us-east-1"
os.environ["AWS_REGION_VOICE"] = "us-east-1"
os.environ["LOG_LEVEL"] = "DEBUG"

from shuttle_voice.config import InferenceSettings, KnowledgeBaseConfig, SessionConfig
from shuttle_voice.core.knowledge_base import RetrievalResult
from shuttle_voice.realtime.client import BidirectionalStreamClient
from shuttle_voice.realtime.tool_bridge import ToolCallBridge
from tests.fakes import FakeKnowledgeBase, FakeTransport


@pytest.fixture
def session_config():
    """Session tuning with the close-sequence waits removed."""
    return SessionConfig(
        audio_queue_max_size=200,
        audio_batch_size=5,
        idle_timeout_s=300.0,
        cleanup_interval_s=60.0,
        content_end_delay_s=0.0,
        prompt_end_delay_s=0.0,
        session_end_delay_s=0.0,
        shutdown_timeout_s=1.0,
    )


@pytest.fixture
def kb_config():
    """Two knowledge bases for retrieval, one for booking."""
    return KnowledgeBaseConfig(
        retrieval_ids=["KB-TRIPS", "KB-FAQ"],
        booking_ids=["KB-FAQ"],
        default_max_results=3,
    )


@pytest.fixture
def sample_results():
    """Passages keyed by knowledge base id."""
    return {
        "KB-TRIPS": [
            RetrievalResult(
                content="Trip 4411: Downtown to Airport, 7:15 AM, 2 passengers.",
                source="trips.csv",
                location="s3://shuttle-kb/trips.csv",
                score=0.91,
            ),
        ],
        "KB-FAQ": [
            RetrievalResult(
                content="Bookings can be changed up to 2 hours before departure.",
                source="faq.md",
                location="s3://shuttle-kb/faq.md",
                title="Booking changes",
                score=0.78,
            ),
        ],
    }


@pytest.fixture
def fake_kb(sample_results):
    """Knowledge base returning sample_results."""
    return FakeKnowledgeBase(sample_results)


@pytest.fixture
def tool_bridge(fake_kb, kb_config):
    return ToolCallBridge(knowledge_base=fake_kb, kb_config=kb_config)


@pytest.fixture
def transport():
    """Transport with no inbound events."""
    return FakeTransport()


@pytest.fixture
def client(transport, tool_bridge, session_config):
    """Orchestrator wired to in-memory collaborators."""
    return BidirectionalStreamClient(
        transport=transport,
        tool_bridge=tool_bridge,
        inference_config=InferenceSettings(max_tokens=1024, top_p=0.9, temperature=0.7),
        session_config=session_config,
        model_id="amazon.nova-sonic-v1:0",
    )
