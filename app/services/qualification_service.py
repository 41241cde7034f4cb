# app/services/qualification_service.py
from __future__ import annotations

import json
from typing import Any, Optional

from openai import OpenAI, OpenAIError
from pydantic import ValidationError as PydanticValidationError

from app.config import Settings, get_settings
from app.errors import QualificationError
from app.schemas.batch import QualificationResult


QUALIFICATION_PROMPT = (
    "Analyze this call transcript.\n"
    "Your goal is to qualify the lead and determine which financial services "
    "they may be most interested in.\n"
    "Score their interest level from 1-5, where 5 means highly engaged and interested."
)

SYSTEM_PROMPT = (
    "You are a helpful assistant. Respond **only** in valid JSON adhering "
    "exactly to the provided schema."
)

LEAD_QUALIFICATION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "score": {
            "type": "number",
            "minimum": 1,
            "maximum": 5,
            "description": "Interest level from 1-5, where 5 means highly engaged and interested",
        },
        "summary": {
            "type": "string",
            "description": (
                "3-4 sentence insight about the lead's interests and potential "
                "financial services they may be interested in"
            ),
        },
        "transcript": {
            "type": "string",
            "description": (
                "The transcript of the call organized and rotating back and forth "
                "between the caller and the lead"
            ),
        },
    },
    "required": ["score", "summary", "transcript"],
    "additionalProperties": False,
}


class QualificationClient:
    """
    Scores a call transcript with OpenAI Structured Outputs.

    Never guesses: any transport failure, empty answer or schema violation
    raises QualificationError so the caller can retry on the next pass.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        timeout: float = 60.0,
        prompt: str = QUALIFICATION_PROMPT,
        client: Optional[Any] = None,
    ):
        if client is None and not api_key:
            self._client = None
        else:
            self._client = client or OpenAI(api_key=api_key, timeout=timeout)
        self._model = model
        self._prompt = prompt

    def qualify(self, transcript: str) -> QualificationResult:
        if self._client is None:
            raise QualificationError("OpenAI not configured, missing: OPENAI_API_KEY")

        try:
            resp = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": f"{self._prompt}\n\nTranscript:\n{transcript}",
                    },
                ],
                response_format={
                    "type": "json_schema",
                    "json_schema": {
                        "name": "LeadQualificationResponse",
                        "strict": True,
                        "schema": LEAD_QUALIFICATION_SCHEMA,
                    },
                },
            )
        except OpenAIError as e:
            raise QualificationError(f"OpenAI API error: {e}") from e

        if not resp.choices:
            raise QualificationError("No choices in OpenAI response")
        raw = resp.choices[0].message.content
        if not raw:
            raise QualificationError("No content in OpenAI response")

        try:
            return QualificationResult.model_validate(json.loads(raw))
        except json.JSONDecodeError as e:
            raise QualificationError(f"Failed to parse JSON: {e}") from e
        except PydanticValidationError as e:
            raise QualificationError(f"Qualification output violates schema: {e}") from e


def build_qualification_client(settings: Settings) -> QualificationClient:
    return QualificationClient(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout=settings.QUALIFICATION_TIMEOUT_SECONDS,
    )


def get_qualification_client() -> QualificationClient:
    """FastAPI dependency."""
    return build_qualification_client(get_settings())
