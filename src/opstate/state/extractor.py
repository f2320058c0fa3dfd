"""Fact extraction from chat messages using LLM."""

import asyncio
import json
import logging
from typing import Any

from groq import AsyncGroq

from .models import ExtractionFailure, FailureReason, RawFact

logger = logging.getLogger(__name__)

FACT_FIELDS = frozenset({"client", "editor", "status", "blocked"})

EXTRACTION_PROMPT = """You track the production state of a video editing team.
Read the chat message below and extract the operational fact it states, if any.

Return ONLY valid JSON with exactly these four keys:
{
  "client": "<client name or null>",
  "editor": "<editor name or null>",
  "status": "<delivered | in_progress | blocked | waiting | null>",
  "blocked": <true | false | null>
}

Rules:
- "done", "finished", "completed" mean delivered
- "stuck", "issue", "problem" mean blocked
- "pending", "awaiting", "reviewing" mean waiting
- "working", "ongoing" mean in_progress
- "blocked" is independent of "status": a message can say something is blocked
  without giving a status
- Use null for anything the message does not state
- Never guess names that are not in the message

Message:
"""


class FactExtractor:
    """Turns one message into a RawFact by asking the LLM.

    Failures never raise: a timeout or client error yields
    ``ORACLE_UNAVAILABLE`` and an unusable body yields ``MALFORMED_RESPONSE``.
    Neither is retried here.
    """

    def __init__(
        self,
        llm_client: AsyncGroq,
        model: str = "llama-3.1-70b-versatile",
        timeout: float = 20.0,
    ) -> None:
        """Initialize the extractor.

        Args:
            llm_client: The Groq client for LLM calls.
            model: The model to use for extraction.
            timeout: Seconds to wait for the LLM before giving up.
        """
        self.client = llm_client
        self.model = model
        self.timeout = timeout

    async def extract(self, text: str) -> RawFact | ExtractionFailure:
        """Extract a raw fact from message text.

        Args:
            text: The message body to classify.

        Returns:
            The oracle's RawFact, or an ExtractionFailure.
        """
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": EXTRACTION_PROMPT + text}],
                    temperature=0.1,
                    response_format={"type": "json_object"},
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Fact extraction timed out after {self.timeout}s")
            return ExtractionFailure(FailureReason.ORACLE_UNAVAILABLE, "timeout")
        except Exception as e:
            logger.warning(f"Fact extraction failed: {e}")
            return ExtractionFailure(FailureReason.ORACLE_UNAVAILABLE, str(e))

        try:
            content = response.choices[0].message.content or ""
        except (AttributeError, IndexError, TypeError) as e:
            logger.warning(f"Extraction response has no message: {e}")
            return ExtractionFailure(
                FailureReason.MALFORMED_RESPONSE, f"no message in response: {e}"
            )

        result = self._parse_response(content)
        if isinstance(result, ExtractionFailure):
            logger.warning(f"Malformed extraction response: {result.detail}")
        return result

    def _strip_code_block(self, content: str) -> str:
        """Remove a surrounding markdown code block, if any."""
        json_str = content.strip()
        if not json_str.startswith("```"):
            return json_str
        lines = [line for line in json_str.split("\n") if not line.startswith("```")]
        return "\n".join(lines)

    def _parse_response(self, content: str) -> RawFact | ExtractionFailure:
        """Parse LLM response into a RawFact.

        The body must be a JSON object with exactly the four fact keys.
        """
        try:
            data: Any = json.loads(self._strip_code_block(content))
        except json.JSONDecodeError as e:
            return ExtractionFailure(FailureReason.MALFORMED_RESPONSE, str(e))

        if not isinstance(data, dict):
            return ExtractionFailure(
                FailureReason.MALFORMED_RESPONSE, "response is not a JSON object"
            )
        if set(data) != FACT_FIELDS:
            return ExtractionFailure(
                FailureReason.MALFORMED_RESPONSE,
                f"unexpected keys: {sorted(data)}",
            )

        for key in ("client", "editor", "status"):
            if data[key] is not None and not isinstance(data[key], str):
                return ExtractionFailure(
                    FailureReason.MALFORMED_RESPONSE, f"'{key}' must be a string"
                )
        if data["blocked"] is not None and not isinstance(data["blocked"], bool):
            return ExtractionFailure(
                FailureReason.MALFORMED_RESPONSE, "'blocked' must be a boolean"
            )

        return RawFact(
            client=data["client"],
            editor=data["editor"],
            status=data["status"],
            blocked=data["blocked"],
        )
