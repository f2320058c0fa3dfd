"""Free-form reasoning over the current snapshot using LLM."""

import json
from collections.abc import Sequence
from typing import Any

from groq import AsyncGroq

from .state.models import StateRecord

SYSTEM_INSTRUCTIONS = """You are the operations assistant of a video editing team.
You receive the current production snapshot as JSON rows, one per client or
editor, and a question from a team member.

Answer using only the snapshot. Each row has the entity name, the client and
editor involved, a status (delivered, in_progress, blocked, waiting or null),
a blocked flag, the message the state came from and when it was sent
(POSIX seconds). "blocked": true always wins over the status.
If the snapshot does not contain the answer, say so briefly.
Keep answers short and plain text."""


class ReasoningOracle:
    """Asks the LLM a question about the snapshot and returns its answer."""

    def __init__(
        self,
        client: AsyncGroq,
        model: str = "llama-3.1-70b-versatile",
        system: str = SYSTEM_INSTRUCTIONS,
    ) -> None:
        """Initialize the oracle.

        Args:
            client: The AsyncGroq client instance.
            model: The model to use for completions.
            system: System instructions sent with every question.
        """
        self._client = client
        self._model = model
        self.system = system

    @property
    def model(self) -> str:
        """Return the model being used."""
        return self._model

    def build_request(
        self,
        question: str,
        snapshot: Sequence[StateRecord],
        current_time_ms: int,
    ) -> dict[str, Any]:
        """Assemble the request sent to the LLM."""
        return {
            "systemInstructions": self.system,
            "currentTimeMs": current_time_ms,
            "snapshotRows": [record.fact.to_row() for record in snapshot],
            "userQuestion": question,
        }

    async def answer(
        self,
        question: str,
        snapshot: Sequence[StateRecord],
        current_time_ms: int,
    ) -> str:
        """Answer a question about the snapshot.

        Returns:
            The LLM's text response, possibly empty.
        """
        request = self.build_request(question, snapshot, current_time_ms)
        prompt = (
            f"Current time (ms since epoch): {request['currentTimeMs']}\n\n"
            f"Snapshot:\n{json.dumps(request['snapshotRows'], ensure_ascii=False, indent=2)}\n\n"
            f"Question: {request['userQuestion']}"
        )

        response = await self._client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": request["systemInstructions"]},
                {"role": "user", "content": prompt},
            ],
        )

        return response.choices[0].message.content or ""
