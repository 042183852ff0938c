"""AI completion oracle used to escalate weak intent classifications."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol, Sequence

from openai import OpenAI
from pydantic import ValidationError as PydanticValidationError

from .schemas import (
    ClassificationSource,
    IntentCategory,
    IntentClassification,
    LeadPriority,
    Turn,
    Urgency,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You classify customer messages for a sales and support inbox. "
    "Reply with a single JSON object with the keys intent (short snake_case "
    "label), confidence (integer 0-100), category (one of "
    f"{', '.join(c.value for c in IntentCategory)}), priority (one of "
    f"{', '.join(p.value for p in LeadPriority)}), urgency (one of "
    f"{', '.join(u.value for u in Urgency)}) and reasoning (one sentence)."
)


class IntentOracle(Protocol):
    def classify(self, content: str, history: Sequence[Turn]) -> IntentClassification: ...


class OracleResponseError(ValueError):
    """Raised when the completion does not contain a usable classification."""


def parse_oracle_reply(raw: str) -> IntentClassification:
    """Parse the JSON body returned by the completion provider."""

    text = raw.strip()
    if text.startswith("```"):
        text = text.strip("`")
        text = text.split("\n", 1)[1] if "\n" in text else text
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end == -1:
        raise OracleResponseError("completion did not contain a JSON object")
    try:
        data: dict[str, Any] = json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise OracleResponseError("completion JSON is malformed") from exc
    data["source"] = ClassificationSource.ORACLE
    try:
        data["confidence"] = max(0, min(100, int(data.get("confidence", 0))))
        return IntentClassification.model_validate(data)
    except (PydanticValidationError, TypeError, ValueError) as exc:
        raise OracleResponseError(f"completion fields are invalid: {exc}") from exc


class OpenAIIntentOracle:
    """Ask an OpenAI chat model for a classification."""

    def __init__(
        self,
        client: OpenAI,
        *,
        model: str = "gpt-4o-mini",
        timeout: float = 8.0,
    ) -> None:
        self._client = client
        self._model = model
        self._timeout = timeout

    @classmethod
    def from_api_key(cls, api_key: str, *, model: str, timeout: float = 8.0) -> "OpenAIIntentOracle":
        return cls(OpenAI(api_key=api_key, timeout=timeout), model=model, timeout=timeout)

    def classify(self, content: str, history: Sequence[Turn]) -> IntentClassification:
        messages: list[dict[str, str]] = [{"role": "system", "content": SYSTEM_PROMPT}]
        for turn in list(history)[-6:]:
            role = "assistant" if turn.role == "agent" else "user"
            messages.append({"role": role, "content": turn.content})
        messages.append({"role": "user", "content": content})
        completion = self._client.chat.completions.create(
            model=self._model,
            messages=messages,
            temperature=0,
        )
        reply = completion.choices[0].message.content or ""
        classification = parse_oracle_reply(reply)
        logger.debug("Oracle classified message as %s", classification.intent)
        return classification


__all__ = [
    "IntentOracle",
    "OpenAIIntentOracle",
    "OracleResponseError",
    "parse_oracle_reply",
]
