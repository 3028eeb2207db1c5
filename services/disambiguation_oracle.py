from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Sequence

from agents.schemas import MatchAlternative, OracleSelection
from config.settings import settings
from services.lmstudio_client import LMStudioClient, LMStudioClientError, get_lmstudio_client

logger = logging.getLogger(__name__)


class DisambiguationOracle:
    """Interface for picking one master data candidate for an ambiguous value.

    Implementations return ``None`` instead of raising when they cannot
    decide.
    """

    def disambiguate(
        self,
        value: str,
        candidates: Sequence[MatchAlternative],
        field_name: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[OracleSelection]:  # pragma: no cover - interface method
        raise NotImplementedError


class LMStudioDisambiguationOracle(DisambiguationOracle):
    """Ask a chat model to choose among the fuzzy-match candidates."""

    def __init__(
        self,
        client: Optional[LMStudioClient] = None,
        *,
        model: Optional[str] = None,
    ) -> None:
        self._client = client
        self._model = model or settings.disambiguation_model
        self._options = {
            "temperature": settings.disambiguation_temperature,
            "max_tokens": settings.disambiguation_max_tokens,
        }

    @property
    def client(self) -> LMStudioClient:
        if self._client is None:
            self._client = get_lmstudio_client()
        return self._client

    def disambiguate(
        self,
        value: str,
        candidates: Sequence[MatchAlternative],
        field_name: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Optional[OracleSelection]:
        if not candidates:
            return None

        prompt = self._build_prompt(value, candidates, field_name, context)
        try:
            reply = self.client.chat_json(model=self._model, prompt=prompt, options=self._options)
        except LMStudioClientError:
            logger.warning("Disambiguation request failed for field %s", field_name, exc_info=True)
            return None

        return self._parse_reply(reply, candidates)

    @staticmethod
    def _build_prompt(
        value: str,
        candidates: Sequence[MatchAlternative],
        field_name: str,
        context: Optional[Dict[str, Any]],
    ) -> str:
        listed = "\n".join(
            f'{position}. "{candidate.name}" (Code: {candidate.code}) - Score: {candidate.score}%'
            for position, candidate in enumerate(candidates, start=1)
        )
        context_text = (
            json.dumps(context, ensure_ascii=False, indent=2, default=str)
            if context
            else "No additional context"
        )
        lines = [
            "You are validating extracted invoice data against a company's master data.",
            "",
            f"Field: {field_name}",
            f'Extracted Value: "{value}"',
            "",
            "Document Context:",
            context_text,
            "",
            "Possible Matches (with fuzzy match scores):",
            listed,
            "",
            "Respond with JSON only:",
            '{"selected_index": <1-based index of best match, or 0 if none are good>, '
            '"confidence": <0-100>, "reasoning": "<brief explanation>"}',
        ]
        return "\n".join(lines)

    @staticmethod
    def _parse_reply(
        reply: Dict[str, Any],
        candidates: Sequence[MatchAlternative],
    ) -> Optional[OracleSelection]:
        try:
            index = int(reply.get("selected_index") or 0)
        except (TypeError, ValueError):
            logger.debug("Unusable selected_index %r", reply.get("selected_index"))
            return None
        if index < 1 or index > len(candidates):
            return None

        selected = candidates[index - 1]
        confidence = reply.get("confidence")
        try:
            if confidence is None or confidence == "":
                confidence_value = selected.score
            else:
                confidence_value = int(round(float(confidence)))
        except (TypeError, ValueError):
            confidence_value = selected.score
        confidence_value = max(0, min(100, confidence_value))

        return OracleSelection(code=selected.code, name=selected.name, confidence=confidence_value)


__all__ = ["DisambiguationOracle", "LMStudioDisambiguationOracle"]
