"""Unit tests for prompt builders and PromptLoader."""

import json

import pytest

from paper_writer.constants import CUSTOM_PROMPTS_KEY
from paper_writer.services.prompts import (
    PromptLoader,
    fact_check_prompt,
    replace_variables,
    reviewer_prompt,
    revisor_prompt,
    strip_front_matter,
)
from paper_writer.utils.storage import MemoryStore


class TestBuilders:
    def test_reviewer_prompt_without_document(self):
        prompt = reviewer_prompt("Section body")

        assert prompt.endswith("Section body")
        assert "FULL DOCUMENT FOR CONTEXT" not in prompt
        assert '{"needs_revision": true/false' in prompt

    def test_reviewer_prompt_with_document(self):
        prompt = reviewer_prompt("Section body", "Whole paper")

        assert "FULL DOCUMENT FOR CONTEXT\nWhole paper" in prompt

    def test_revisor_prompt_includes_reason(self):
        prompt = revisor_prompt("Body", "Too wordy", "Paper")

        assert "Too wordy" in prompt
        assert "Paper" in prompt
        assert prompt.endswith("Body")

    def test_fact_check_prompt(self):
        assert "Full Manuscript Context" not in fact_check_prompt("Claim")
        assert "Full Manuscript Context" in fact_check_prompt("Claim", "Paper")


class TestTemplateHelpers:
    def test_strip_front_matter(self):
        text = "---\nid: x\nname: X\n---\nHello {{name}}\n"

        assert strip_front_matter(text) == "Hello {{name}}"

    def test_replace_variables(self):
        template = "{{greeting}}, {{name}}! {{unknown}}"

        result = replace_variables(template, {"greeting": "Hi", "name": ""})

        assert result == "Hi, ! {{unknown}}"


class TestPromptLoader:
    def test_loads_from_file(self, tmp_path):
        (tmp_path / "summary.md").write_text("---\nid: summary\n---\nSummarize {{text}}")
        loader = PromptLoader(tmp_path)

        assert loader.render("summary", {"text": "this"}) == "Summarize this"

    def test_override_wins(self, tmp_path):
        (tmp_path / "summary.md").write_text("From file")
        store = MemoryStore({CUSTOM_PROMPTS_KEY: json.dumps({"summary": "From user"})})

        assert PromptLoader(tmp_path, overrides=store).load("summary") == "From user"

    def test_unparsable_overrides_fall_back_to_file(self, tmp_path):
        (tmp_path / "summary.md").write_text("From file")
        store = MemoryStore({CUSTOM_PROMPTS_KEY: "{broken"})

        assert PromptLoader(tmp_path, overrides=store).load("summary") == "From file"

    def test_cache(self, tmp_path):
        path = tmp_path / "summary.md"
        path.write_text("v1")
        loader = PromptLoader(tmp_path)

        assert loader.load("summary") == "v1"
        path.write_text("v2")
        assert loader.load("summary") == "v1"

        loader.clear_cache()
        assert loader.load("summary") == "v2"

    def test_cache_disabled(self, tmp_path):
        path = tmp_path / "summary.md"
        path.write_text("v1")
        loader = PromptLoader(tmp_path, use_cache=False)

        loader.load("summary")
        path.write_text("v2")
        assert loader.load("summary") == "v2"

    def test_missing_template_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            PromptLoader(tmp_path).load("missing")
