"""Unit tests for the click CLI (clients mocked)."""

import json
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from paper_writer.cli.cli import main
from paper_writer.constants import SETTINGS_KEY
from paper_writer.data_sources.base_client import DataSourceError
from paper_writer.models.model_llm import (
    CustomRevisionResult,
    FactCheckResult,
    RevisionVerdict,
)
from paper_writer.models.model_pubmed import SearchResult, SummaryEntry


@pytest.fixture
def settings_file(tmp_path, monkeypatch):
    path = tmp_path / "settings.json"
    document = {
        "providerType": "openrouter",
        "openrouter": {"apiKey": "sk-or-test", "selectedModel": {"id": "openai/gpt-4o"}},
    }
    path.write_text(json.dumps({SETTINGS_KEY: json.dumps(document)}))
    monkeypatch.setenv("PAPER_WRITER_SETTINGS_FILE", str(path))
    return path


@pytest.fixture
def runner():
    return CliRunner()


def test_search(runner):
    with patch(
        "paper_writer.cli.cli.PubMedClient.search",
        new=AsyncMock(return_value=SearchResult(count=2, pmids=["1", "2"])),
    ) as mock_search:
        result = runner.invoke(main, ["search", "metformin", "-n", "2"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {"count": 2, "pmids": ["1", "2"]}
    assert mock_search.call_args.kwargs["retmax"] == 2


def test_search_error_is_reported(runner):
    with patch(
        "paper_writer.cli.cli.PubMedClient.search",
        new=AsyncMock(side_effect=DataSourceError("pubmed", "HTTP 500: boom", 500)),
    ):
        result = runner.invoke(main, ["search", "metformin"])

    assert result.exit_code == 1
    assert "[pubmed] HTTP 500: boom" in result.output


def test_summary_citations(runner):
    entries = [SummaryEntry(pmid="33567185", title="A title.", pubdate="2021 Mar")]
    with patch(
        "paper_writer.cli.cli.PubMedClient.summaries",
        new=AsyncMock(return_value=entries),
    ):
        result = runner.invoke(main, ["summary", "33567185", "--citations"])

    assert result.exit_code == 0, result.output
    citation = json.loads(result.output)[0]
    assert citation["id"] == "pmid:33567185"
    assert citation["year"] == 2021


def test_fetch_parse_rejects_bad_xml(runner):
    with patch(
        "paper_writer.cli.cli.PubMedClient.fetch_raw",
        new=AsyncMock(return_value="<unclosed"),
    ):
        result = runner.invoke(main, ["fetch", "1", "--parse"])

    assert result.exit_code == 1
    assert "Failed to parse XML" in result.output


def test_revise_without_settings_fails_cleanly(runner, tmp_path, monkeypatch):
    monkeypatch.setenv("PAPER_WRITER_SETTINGS_FILE", str(tmp_path / "none.json"))
    result = runner.invoke(main, ["revise", "-"], input="Some text")

    assert result.exit_code == 1
    assert "Settings not configured" in result.output


def test_revise(runner, settings_file):
    verdict = RevisionVerdict(needs_revision=True, reason="Wordy", revised_text="Short.")
    with patch(
        "paper_writer.cli.cli.RevisionPipeline.perform_ai_revision",
        new=AsyncMock(return_value=verdict),
    ):
        result = runner.invoke(main, ["revise", "-"], input="A long sentence.")

    assert result.exit_code == 0, result.output
    assert "Short." in result.output


def test_revise_with_instruction_and_diff(runner, settings_file):
    revision = CustomRevisionResult(
        revised_text="the slow fox", reviewer_assessment='Custom revision requested: "x"'
    )
    with patch(
        "paper_writer.cli.cli.RevisionPipeline.perform_custom_revision",
        new=AsyncMock(return_value=revision),
    ) as mock_custom:
        result = runner.invoke(
            main, ["revise", "-", "-i", "slow it down", "--diff"], input="the quick fox"
        )

    assert result.exit_code == 0, result.output
    assert mock_custom.call_args.args[1] == "slow it down"
    assert '<span class="wikEdDiffInsert">slow</span>' in result.output


def test_fact_check(runner, settings_file):
    with patch(
        "paper_writer.cli.cli.RevisionPipeline.perform_fact_check",
        new=AsyncMock(return_value=FactCheckResult(analysis="All claims check out.")),
    ):
        result = runner.invoke(main, ["fact-check", "-"], input="Claim.")

    assert result.exit_code == 0, result.output
    assert "All claims check out." in result.output


@pytest.mark.parametrize("valid, exit_code", [(True, 0), (False, 1)])
def test_validate_key(runner, valid, exit_code):
    with patch(
        "paper_writer.cli.cli.ChatOrchestrator.validate_api_key",
        new=AsyncMock(return_value=valid),
    ):
        result = runner.invoke(main, ["validate-key", "--api-key", "sk-or-x"])

    assert result.exit_code == exit_code


def test_prompt_renders_template(runner, tmp_path, monkeypatch):
    prompts = tmp_path / "prompts"
    prompts.mkdir()
    (prompts / "abstract.md").write_text("---\nid: abstract\n---\nSummarize {{topic}}.")
    monkeypatch.setenv("PAPER_WRITER_PROMPTS_DIR", str(prompts))
    monkeypatch.setenv("PAPER_WRITER_SETTINGS_FILE", str(tmp_path / "settings.json"))

    result = runner.invoke(main, ["prompt", "abstract", "--var", "topic=GLP-1 agonists"])

    assert result.exit_code == 0, result.output
    assert result.output.strip() == "Summarize GLP-1 agonists."


def test_prompt_missing_template(runner, tmp_path, monkeypatch):
    monkeypatch.setenv("PAPER_WRITER_SETTINGS_FILE", str(tmp_path / "settings.json"))

    result = runner.invoke(main, ["prompt", "nope", "--dir", str(tmp_path)])

    assert result.exit_code == 1
    assert "Cannot load prompt 'nope'" in result.output
