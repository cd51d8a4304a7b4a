"""Helpers for configuring the OpenAI client and reading its responses."""

from __future__ import annotations

import json
from typing import Any, Dict, List

from openai import AsyncOpenAI


class ContentFormatError(RuntimeError):
    """Raised when the model returns text that cannot be used."""


def build_openai_client(api_key: str) -> AsyncOpenAI:
    """Create a configured AsyncOpenAI client."""
    return AsyncOpenAI(api_key=api_key)


def extract_output_text(response: object) -> str:
    """Best-effort extraction of text from a Responses API result."""
    output_text = getattr(response, "output_text", None)
    if isinstance(output_text, str) and output_text.strip():
        return output_text

    collected: List[str] = []
    for item in getattr(response, "output", None) or []:
        content = getattr(item, "content", None)
        parts = content if isinstance(content, list) else [content]
        for part in parts:
            text = getattr(part, "text", None)
            if isinstance(text, str) and text:
                collected.append(text)
    return "\n".join(collected)


def strip_code_fences(text: str) -> str:
    fenced = text.strip()
    if fenced.startswith("```") and fenced.endswith("```"):
        return fenced.split("\n", 1)[-1].rsplit("\n", 1)[0].strip()
    return fenced


def parse_json_object(response: object) -> Dict[str, Any]:
    """Decode a JSON object from a model response or raise ContentFormatError."""
    raw_text = strip_code_fences(extract_output_text(response))
    if not raw_text:
        raise ContentFormatError("Model returned an empty response.")
    try:
        payload = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise ContentFormatError("Model returned malformed JSON.") from exc
    if not isinstance(payload, dict):
        raise ContentFormatError("Model returned JSON that is not an object.")
    return payload
