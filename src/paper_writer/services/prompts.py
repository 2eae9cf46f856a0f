"""
Prompt builders for the revision workflow and a Markdown template loader.

The reviewer/revisor/fact-check prompts are built in code.  Other prompts
live as `<prompt_id>.md` files with optional front matter and `{{name}}`
placeholders; a user override stored in the key-value store wins over the
file.
"""

import json
import logging
import re
from pathlib import Path

from paper_writer.constants import CUSTOM_PROMPTS_KEY
from paper_writer.utils.storage import KeyValueStore

logger = logging.getLogger(__name__)

REVIEWER_SYSTEM_PROMPT = (
    "You are an expert academic reviewer responsible for evaluating sections "
    "of academic documents."
)
REVISOR_SYSTEM_PROMPT = (
    "You are an expert academic editor and reviser focused on improving "
    "academic writing quality."
)
CUSTOM_REVISOR_SYSTEM_PROMPT = (
    "You are an expert academic editor and reviser focused on implementing "
    "specific user instructions."
)
FACT_CHECK_SYSTEM_PROMPT = (
    "You are an expert academic fact-checker with deep knowledge of research "
    "methodologies and academic standards."
)

REVIEWER_PROMPT = """\
Your Role: You are an expert academic reviewer responsible for evaluating a section of an academic document.{document_context}

Primary Task: You will analyze the section provided below and determine whether it needs revision. Your response must be in the exact format specified.

CRITICAL INSTRUCTIONS:
1. Output Format (STRICT):
Your output must follow this exact JSON format:
{{"needs_revision": true/false, "reason": "detailed explanation"}}

2. Review Criteria:
- Argument & Logic: coherence, soundness of reasoning and logical flow
- Clarity & Presentation: precise language and clear main points
- Evidence & Support: sufficient and relevant data, citations or claims
- Academic Writing Quality: professional tone and appropriate terminology
- Section Structure: organization, transitions and overall coherence

REVISION RESTRAINT:
- Robotic, AI-generated language patterns are a MAJOR reason to recommend revision
- Only recommend revision for SIGNIFICANT issues that affect comprehension, academic quality or natural writing style
- Do NOT recommend revision for minor stylistic preferences
- Preserve the author's voice where possible

### SECTION TO REVIEW

{text}"""

REVIEWER_DOCUMENT_CONTEXT = """

DOCUMENT CONTEXT:
You have access to the full document below. Use it to understand how this section fits the document structure, keep evaluation standards consistent, and consider flow with surrounding content.

### FULL DOCUMENT FOR CONTEXT
{document}

---"""

REVISOR_PROMPT = """\
Your Role: You are an expert academic editor and reviser.{document_context}

REVIEWER ASSESSMENT:
The reviewer identified the following issues with this section that MUST be addressed in your revision:
{reason}

You must directly address each issue mentioned by the reviewer. If the reviewer identifies robotic, AI-generated or overly formal language, rewrite those passages to sound natural while keeping academic standards.

---

Primary Task: Perform a complete revision of the section provided below. Your sole output will be the rewritten text of that entire section.

CRITICAL INSTRUCTIONS:
1. Output Format (STRICT):
Output a single string containing the full, rewritten section. No headers, comments, JSON or any other text.

2. Revision Principles:
- Source-Based Revision: use only the information and intent present in the original section; do not introduce new facts.
- Complete Rewrite: produce a full replacement, not a list of corrections.
- Section Coherence: keep logical flow, transitions and a consistent academic tone.
- Citation Preservation: keep all citations and references exactly as they appear.

### SECTION TO REVISE

{text}"""

REVISOR_DOCUMENT_CONTEXT = """

DOCUMENT CONTEXT:
You have access to the full document below. Use it to keep terminology and style consistent, make the revised section flow with its neighbours, and keep citations consistent with the document's style.

### FULL DOCUMENT FOR CONTEXT
{document}

---"""

FACT_CHECK_PROMPT = """\
You are an expert academic fact-checker and research assistant. Your task is to analyze the selected text for potential factual issues, inconsistencies, or areas that may need verification.

Selected Text to Analyze:
"{text}"{document_context}

Please analyze this text and identify:

1. **Factual Claims** - specific factual statements that can be verified
2. **Potential Issues** - claims that seem questionable, outdated, or unsupported
3. **Consistency Check** - consistency with other claims and data in the manuscript
4. **Missing Context** - important context or qualifications that are missing
5. **Verification Suggestions** - the kinds of sources needed to verify the claims
6. **Accuracy Assessment** - an overall assessment of the text's reliability

Focus on factual accuracy, not writing style, and distinguish opinions and interpretations from factual claims."""

FACT_CHECK_DOCUMENT_CONTEXT = """

Full Manuscript Context (for reference):
"{document}"

Use this context to check for consistency with other claims in the manuscript and to better understand the overall research context."""


def reviewer_prompt(text: str, document: str | None = None) -> str:
    context = REVIEWER_DOCUMENT_CONTEXT.format(document=document) if document else ""
    return REVIEWER_PROMPT.format(document_context=context, text=text)


def revisor_prompt(text: str, reason: str, document: str | None = None) -> str:
    context = REVISOR_DOCUMENT_CONTEXT.format(document=document) if document else ""
    return REVISOR_PROMPT.format(document_context=context, reason=reason, text=text)


def fact_check_prompt(text: str, document: str | None = None) -> str:
    context = FACT_CHECK_DOCUMENT_CONTEXT.format(document=document) if document else ""
    return FACT_CHECK_PROMPT.format(text=text, document_context=context)


# ---------------------------------------------------------------------------
# Template loading
# ---------------------------------------------------------------------------


_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def strip_front_matter(text: str) -> str:
    """Drop every line between (and including) `---` delimiter pairs."""
    lines = []
    in_front_matter = False
    for line in text.split("\n"):
        if line == "---":
            in_front_matter = not in_front_matter
            continue
        if not in_front_matter:
            lines.append(line)
    return "\n".join(lines).strip()


def replace_variables(template: str, variables: dict[str, str]) -> str:
    """Substitute `{{name}}` placeholders; names not in ``variables`` are left alone."""

    def substitute(match: re.Match) -> str:
        name = match.group(1)
        if name not in variables:
            return match.group(0)
        return variables[name] or ""

    return _PLACEHOLDER.sub(substitute, template)


class PromptLoader:
    """Load, cache and render Markdown prompt templates."""

    def __init__(
        self,
        templates_dir: Path,
        overrides: KeyValueStore | None = None,
        use_cache: bool = True,
    ) -> None:
        self.templates_dir = templates_dir
        self.overrides = overrides
        self.use_cache = use_cache
        self._cache: dict[str, str] = {}

    def _override(self, prompt_id: str) -> str | None:
        if self.overrides is None:
            return None
        raw = self.overrides.get_item(CUSTOM_PROMPTS_KEY)
        if not raw:
            return None
        try:
            custom = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring unparsable custom prompt templates")
            return None
        value = custom.get(prompt_id) if isinstance(custom, dict) else None
        return value if isinstance(value, str) and value else None

    def load(self, prompt_id: str) -> str:
        """Return the template text for ``prompt_id`` without its front matter."""
        if self.use_cache and prompt_id in self._cache:
            return self._cache[prompt_id]

        template = self._override(prompt_id)
        if template is None:
            path = self.templates_dir / f"{prompt_id}.md"
            try:
                template = strip_front_matter(path.read_text(encoding="utf-8"))
            except OSError:
                logger.error("Failed to load prompt template %s from %s", prompt_id, path)
                raise

        if self.use_cache:
            self._cache[prompt_id] = template
        return template

    def render(self, prompt_id: str, variables: dict[str, str]) -> str:
        return replace_variables(self.load(prompt_id), variables)

    def clear_cache(self) -> None:
        self._cache.clear()
