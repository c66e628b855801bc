import pytest
from unittest.mock import MagicMock

from citefix.config.settings import Settings
from citefix.pipeline.state_machine import JobStateMachine
from citefix.services.report_service import LocalDocumentRenderer, ReportAssembler
from citefix.store.job_store import InMemoryJobRepository, JobStore
from tests.helpers import (
    COMPETITORS,
    DOMAIN,
    FakeAgent,
    FakeFetcher,
    FakeSearch,
    competitor_markdown,
    hit,
    weak_markdown,
)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def settings(tmp_path):
    """Real settings pointed at temporary directories with short timeouts."""
    return Settings(
        you_api_key="you-test-key",
        anthropic_api_key="sk-ant-test-key",
        output_dir=tmp_path / "reports",
        job_store_dir=tmp_path / "jobs",
        log_dir=tmp_path / "logs",
        search_timeout_seconds=5,
        fetch_timeout_seconds=5,
        agent_timeout_seconds=5,
        report_timeout_seconds=5,
        max_concurrent_requests=2,
    )


@pytest.fixture
def mock_settings():
    """MagicMock settings for services that only read a few attributes."""
    settings = MagicMock()
    settings.you_api_key.get_secret_value.return_value = "you-test-key"
    settings.anthropic_api_key.get_secret_value.return_value = "sk-ant-test-key"
    settings.claude_model = "claude-sonnet-4-20250514"
    settings.claude_max_tokens = 4000
    settings.research_temperature = 0.7
    settings.asset_temperature = 0.3
    settings.max_retries = 3
    return settings


@pytest.fixture
def store():
    return JobStore(InMemoryJobRepository())


@pytest.fixture
def search_hits():
    return [hit(url) for url in COMPETITORS]


@pytest.fixture
def fake_search(search_hits):
    return FakeSearch(search_hits)


@pytest.fixture
def fake_fetcher():
    pages = {url: competitor_markdown(url.split("/")[2]) for url in COMPETITORS}
    pages[DOMAIN] = weak_markdown()
    return FakeFetcher(pages)


@pytest.fixture
def fake_agent():
    return FakeAgent()


@pytest.fixture
def assembler(tmp_path):
    return ReportAssembler([LocalDocumentRenderer()], tmp_path / "reports")


@pytest.fixture
def machine(store, fake_search, fake_fetcher, fake_agent, assembler, settings):
    return JobStateMachine(store, fake_search, fake_fetcher, fake_agent, assembler, settings)
