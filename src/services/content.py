"""Generated vocabulary content requested through the request governor."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from openai import AsyncOpenAI

from src.services.governor import GovernorResult, RequestGovernor
from src.services.openai_client import (
    ContentFormatError,
    extract_output_text,
    parse_json_object,
    strip_code_fences,
)


LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TermDescription:
    """Explanation of a vocabulary term produced by the model."""

    term: str
    translation: str
    definition: Optional[str] = None
    example: Optional[str] = None
    example_translation: Optional[str] = None

    @property
    def combined_example(self) -> Optional[str]:
        if self.example and self.example_translation:
            return f"{self.example} ({self.example_translation})"
        return self.example or self.example_translation


class ContentGenerator:
    """Builds prompts, parses replies and routes every call through the governor."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        governor: RequestGovernor,
        source_language: str,
        target_language: str,
    ) -> None:
        self._client = client
        self._model = model
        self._governor = governor
        self._source_language = source_language
        self._target_language = target_language

    @property
    def governor(self) -> RequestGovernor:
        return self._governor

    def _describe_prompt(self) -> str:
        return (
            "You are a vocabulary tutor for a student learning {source}. "
            "Explain the term the user sends. Respond with a JSON object with the keys "
            "\"translation\" (a natural translation into {target}), "
            "\"definition\" (one short sentence in {target}), "
            "\"example\" (a short sentence in {source} using the term) and "
            "\"example_translation\" (that sentence in {target}). "
            "Always produce valid JSON without commentary, Markdown, or code fences."
        ).format(source=self._source_language, target=self._target_language)

    def _example_prompt(self, previous: Optional[str]) -> str:
        prompt = (
            "You write example sentences for a student learning {source}. "
            "Reply with exactly one short, natural sentence in {source} that uses the term the user sends, "
            "followed by its {target} translation in parentheses. No other text."
        ).format(source=self._source_language, target=self._target_language)
        if previous:
            prompt += f" Do not repeat this example: {previous}"
        return prompt

    async def describe_term(self, term: str) -> GovernorResult[TermDescription]:
        """Ask the model to translate and explain ``term``."""
        cleaned = term.strip()

        async def operation() -> TermDescription:
            response = await self._client.responses.create(
                model=self._model,
                input=[
                    {"role": "system", "content": self._describe_prompt()},
                    {"role": "user", "content": cleaned},
                ],
            )
            return self._parse_description(cleaned, response)

        result = await self._governor.execute(operation)
        if not result.ok:
            LOGGER.info("Could not describe %r: %s", cleaned, result.failure.kind.value)
        return result

    async def generate_example(self, term: str, previous: Optional[str] = None) -> GovernorResult[str]:
        """Ask the model for a new example sentence for ``term``."""
        cleaned = term.strip()

        async def operation() -> str:
            response = await self._client.responses.create(
                model=self._model,
                input=[
                    {"role": "system", "content": self._example_prompt(previous)},
                    {"role": "user", "content": cleaned},
                ],
            )
            example = strip_code_fences(extract_output_text(response))
            if not example:
                raise ContentFormatError("Model returned an empty example.")
            return example

        return await self._governor.execute(operation)

    @staticmethod
    def _parse_description(term: str, response: object) -> TermDescription:
        payload = parse_json_object(response)
        translation = _clean(payload.get("translation"))
        if not translation:
            LOGGER.warning("Term description for %r is missing a translation: %s", term, payload)
            raise ContentFormatError("Term description is missing a translation.")
        return TermDescription(
            term=term,
            translation=translation,
            definition=_clean(payload.get("definition")),
            example=_clean(payload.get("example")),
            example_translation=_clean(payload.get("example_translation")),
        )


def _clean(value: object) -> Optional[str]:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None
