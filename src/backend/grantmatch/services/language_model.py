"""
Language-model service client using Azure OpenAI.

Contract used by Tier 2 extraction:

    extract(text, schema) -> LanguageModelResponse(fields, confidence)

The OpenAI SDK call is synchronous; it runs in the default executor with
its own timeout so a slow model never stalls the ingestion worker.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from openai import AzureOpenAI, OpenAIError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from grantmatch.core.config import Settings, get_settings
from grantmatch.core.exceptions import LanguageModelException
from grantmatch.core.logging import LoggerMixin
from grantmatch.services.budget import CallBudget

EXTRACTION_SYSTEM_PROMPT = """You extract eligibility requirements from Korean government R&D funding announcements.

Return ONLY the requested fields. For every field return an object:
  {{"value": <value or null>, "confidence": "high" | "medium" | "low", "evidence": "<verbatim quote from the text>"}}

Rules:
- Use null when the text does not state the requirement. Never guess.
- "evidence" must be copied verbatim from the text (max 200 characters).
- Dates use YYYY-MM-DD. Amounts are in Korean won as integers.

Fields:
{fields}

Respond with valid JSON: {{"fields": {{"<field name>": {{...}}}}}}
"""


@dataclass
class LanguageModelResponse:
    """Parsed extraction response."""

    fields: dict[str, dict[str, Any]] = field(default_factory=dict)
    confidence: str = "low"
    duration_seconds: float = 0.0


class LanguageModelClient(LoggerMixin):
    """Azure OpenAI client for schema-bounded field extraction."""

    def __init__(
        self,
        settings: Settings | None = None,
        budget: CallBudget | None = None,
        client: AzureOpenAI | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.budget = budget or CallBudget(
            "AzureOpenAI", self.settings.extraction_tier2_calls_per_minute
        )
        self.timeout = self.settings.extraction_tier2_timeout
        self.deployment = self.settings.azure_openai_deployment
        self._client = client

    @property
    def is_configured(self) -> bool:
        return self._client is not None or bool(
            self.settings.azure_openai_endpoint and self.settings.azure_openai_api_key
        )

    @property
    def client(self) -> AzureOpenAI:
        """Lazy-initialize the Azure OpenAI client."""
        if self._client is None:
            if not self.is_configured:
                raise LanguageModelException(
                    "Azure OpenAI not configured. Set AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_API_KEY."
                )
            self._client = AzureOpenAI(
                azure_endpoint=self.settings.azure_openai_endpoint,
                api_key=self.settings.azure_openai_api_key,
                api_version=self.settings.azure_openai_api_version,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    @retry(
        retry=retry_if_exception_type(OpenAIError),
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=4),
        reraise=True,
    )
    def _complete(self, system_prompt: str, text: str) -> dict[str, Any]:
        response = self.client.chat.completions.create(
            model=self.deployment,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": f"Announcement text:\n\n{text}"},
            ],
            temperature=0.1,
            max_tokens=1500,
            response_format={"type": "json_object"},
        )
        return json.loads(response.choices[0].message.content or "{}")

    async def extract(self, text: str, schema: dict[str, str]) -> LanguageModelResponse:
        """
        Ask the model for the fields described by `schema`.

        Args:
            text: Bounded-length announcement text
            schema: Field name -> description of the expected value

        Returns:
            LanguageModelResponse with one entry per returned field

        Raises:
            QuotaExhaustedException: The per-minute budget is spent
            asyncio.TimeoutError: The call exceeded the Tier 2 timeout
            LanguageModelException: The service failed or returned garbage
        """
        self.budget.acquire()
        fields_block = "\n".join(f"- {name}: {description}" for name, description in schema.items())
        system_prompt = EXTRACTION_SYSTEM_PROMPT.format(fields=fields_block)

        start = time.time()
        loop = asyncio.get_running_loop()
        try:
            result = await asyncio.wait_for(
                loop.run_in_executor(None, partial(self._complete, system_prompt, text)),
                timeout=self.timeout,
            )
        except (OpenAIError, json.JSONDecodeError) as e:
            self.logger.error("language_model_failed", error=str(e))
            raise LanguageModelException(str(e)) from e

        raw_fields = result.get("fields") or {}
        fields = {
            name: value
            for name, value in raw_fields.items()
            if name in schema and isinstance(value, dict)
        }
        levels = [str(v.get("confidence", "low")).lower() for v in fields.values()]
        overall = "high" if levels and all(level == "high" for level in levels) else (
            "medium" if any(level in ("high", "medium") for level in levels) else "low"
        )
        duration = time.time() - start
        self.logger.info(
            "language_model_extracted",
            requested=len(schema),
            returned=len(fields),
            duration=round(duration, 2),
        )
        return LanguageModelResponse(fields=fields, confidence=overall, duration_seconds=duration)
