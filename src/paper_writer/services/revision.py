"""
Two-stage AI revision: a reviewer decides, a revisor rewrites.

    Start → Review → NoRevisionNeeded           (text returned unchanged)
                   → Revise → Done              (one rewrite, no second review)

An unparsable reviewer reply counts as "needs revision".  Custom revision
skips the review and hands the user's instruction to the revisor as the
reason.
"""

import json
import logging
from typing import Any, Protocol

from pydantic import BaseModel, ValidationError

from paper_writer.models.model_llm import (
    CustomRevisionResult,
    FactCheckResult,
    RevisionVerdict,
)
from paper_writer.services.diff import DiffEngine, RichDiffEngine
from paper_writer.services.llm import strip_code_fences
from paper_writer.services.prompts import (
    CUSTOM_REVISOR_SYSTEM_PROMPT,
    FACT_CHECK_SYSTEM_PROMPT,
    REVIEWER_SYSTEM_PROMPT,
    REVISOR_SYSTEM_PROMPT,
    fact_check_prompt,
    reviewer_prompt,
    revisor_prompt,
)

logger = logging.getLogger(__name__)

UNPARSABLE_REVIEW_REASON = "Unable to parse reviewer response, proceeding with revision"


class CompletionClient(Protocol):
    """Anything with a system+user `chat_completion` returning `.content`."""

    async def chat_completion(self, system_prompt: str, user_prompt: str) -> Any: ...


class ReviewerReply(BaseModel):
    needs_revision: bool
    reason: str = ""


def parse_reviewer_reply(content: str) -> ReviewerReply:
    """Decode the reviewer's JSON verdict, defaulting to needs_revision=True."""
    try:
        return ReviewerReply.model_validate(json.loads(strip_code_fences(content)))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning("Failed to parse reviewer response: %s", e)
        return ReviewerReply(needs_revision=True, reason=UNPARSABLE_REVIEW_REASON)


class RevisionPipeline:
    def __init__(self, llm: CompletionClient, diff_engine: DiffEngine | None = None):
        self.llm = llm
        self.diff_engine = diff_engine or RichDiffEngine()

    async def review(self, text: str, document: str | None = None) -> ReviewerReply:
        response = await self.llm.chat_completion(
            REVIEWER_SYSTEM_PROMPT, reviewer_prompt(text, document)
        )
        return parse_reviewer_reply(response.content)

    async def revise(
        self,
        text: str,
        reason: str,
        document: str | None = None,
        system_prompt: str = REVISOR_SYSTEM_PROMPT,
    ) -> str:
        response = await self.llm.chat_completion(
            system_prompt, revisor_prompt(text, reason, document)
        )
        return response.content

    async def perform_ai_revision(
        self, text: str, document: str | None = None
    ) -> RevisionVerdict:
        """Review ``text`` and, only if the reviewer asks for it, revise it once."""
        verdict = await self.review(text, document)
        if not verdict.needs_revision:
            logger.info("Reviewer found no revision needed")
            return RevisionVerdict(
                needs_revision=False, reason=verdict.reason, revised_text=text
            )

        logger.info("Reviewer requested revision: %s", verdict.reason[:120])
        revised = await self.revise(text, verdict.reason, document)
        return RevisionVerdict(needs_revision=True, reason=verdict.reason, revised_text=revised)

    async def perform_custom_revision(
        self, text: str, instruction: str, document: str | None = None
    ) -> CustomRevisionResult:
        """Revise ``text`` following ``instruction``; no review stage."""
        revised = await self.revise(
            text,
            f"Custom user instruction: {instruction}",
            document,
            system_prompt=CUSTOM_REVISOR_SYSTEM_PROMPT,
        )
        return CustomRevisionResult(
            revised_text=revised,
            reviewer_assessment=f'Custom revision requested: "{instruction}"',
        )

    async def perform_fact_check(
        self, text: str, document: str | None = None
    ) -> FactCheckResult:
        response = await self.llm.chat_completion(
            FACT_CHECK_SYSTEM_PROMPT, fact_check_prompt(text, document)
        )
        return FactCheckResult(analysis=response.content)

    def word_diff(self, original: str, revised: str) -> str:
        return self.diff_engine.diff(original, revised)
