from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from beacon.config import Settings
from beacon.enforcement.collaborators import LanguageModelError

logger = logging.getLogger("beacon.nova")


class BedrockLanguageModel:
    """Single non-streaming Bedrock ``converse`` call used to draft a section."""

    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self._settings = settings
        self._client = client

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        return await asyncio.to_thread(self.complete_sync, system_prompt, user_prompt)

    def complete_sync(self, system_prompt: str, user_prompt: str) -> str:
        model_id = self._settings.bedrock_model_id
        if not model_id:
            raise LanguageModelError("Bedrock model ID is not configured.")

        started = time.perf_counter()
        try:
            response = self._get_client().converse(
                modelId=model_id,
                system=[{"text": system_prompt}],
                messages=[{"role": "user", "content": [{"text": user_prompt}]}],
                inferenceConfig={
                    "temperature": self._settings.generation_temperature,
                    "maxTokens": self._settings.generation_max_tokens,
                },
            )
        except LanguageModelError:
            raise
        except Exception as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            error_text = str(exc)
            logger.warning(
                "nova_invoke_failed",
                extra={
                    "event": "nova_invoke_failed",
                    "model_id": model_id,
                    "duration_ms": duration_ms,
                    "error": error_text,
                },
            )
            if "model identifier is invalid" in error_text.lower():
                raise LanguageModelError(
                    "Bedrock invocation failed: the configured model identifier is invalid "
                    f"(AWS_REGION={self._settings.aws_region}, BEDROCK_MODEL_ID={model_id})."
                ) from exc
            raise LanguageModelError(f"Bedrock invocation failed for model '{model_id}': {exc}") from exc

        text = self._extract_text(response)
        logger.info(
            "nova_invoke_completed",
            extra={
                "event": "nova_invoke_completed",
                "model_id": model_id,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "system_prompt_chars": len(system_prompt),
                "user_prompt_chars": len(user_prompt),
                "response_chars": len(text),
            },
        )
        return text

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            import boto3  # type: ignore
        except ImportError as exc:
            raise LanguageModelError("boto3 is required for the Bedrock runtime.") from exc

        self._client = boto3.client("bedrock-runtime", region_name=self._settings.aws_region)
        return self._client

    @staticmethod
    def _extract_text(response: Any) -> str:
        outputs = response.get("output", {}).get("message", {}).get("content", [])
        parts: list[str] = []
        for item in outputs:
            text = item.get("text")
            if isinstance(text, str) and text.strip():
                parts.append(text)
        if not parts:
            raise LanguageModelError("Bedrock response did not include textual output.")
        return "\n".join(parts).strip()
