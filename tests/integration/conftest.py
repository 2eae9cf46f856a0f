"""Shared fixtures for integration tests.

These tests hit the live NCBI and OpenRouter APIs.  They are skipped unless
PAPER_WRITER_LIVE_TESTS is set; the OpenRouter tests additionally need
OPENROUTER_API_KEY.
"""

import os

import pytest
from dotenv import load_dotenv

from paper_writer.data_sources.pubmed import PubMedClient
from paper_writer.services.openrouter import ChatOrchestrator, OpenRouterConfig

load_dotenv()


@pytest.fixture(autouse=True)
def _require_live_flag():
    if not os.getenv("PAPER_WRITER_LIVE_TESTS"):
        pytest.skip("PAPER_WRITER_LIVE_TESTS not set, skipping live API test")


@pytest.fixture
async def pubmed_client():
    """Create and tear down a PubMedClient."""
    c = PubMedClient(api_key=os.getenv("NCBI_API_KEY"))
    yield c
    await c.close()


@pytest.fixture
async def orchestrator():
    """Create and tear down a ChatOrchestrator."""
    api_key = os.getenv("OPENROUTER_API_KEY")
    if not api_key:
        pytest.skip("OPENROUTER_API_KEY not set")
    c = ChatOrchestrator(OpenRouterConfig(api_key=api_key))
    yield c
    await c.close()
