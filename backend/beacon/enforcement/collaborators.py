from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from beacon.enforcement.models import OrganizationProfile, RankedChunk

if TYPE_CHECKING:
    from beacon.enforcement.pipeline import GenerationOutcome


class LanguageModelError(RuntimeError):
    """Raised when the drafting provider fails or returns unusable output."""


class Retriever(Protocol):
    async def search(self, query_text: str, organization_id: str, top_k: int) -> list[RankedChunk]:
        """Return up to ``top_k`` chunks of the organization's corpus, best first."""


class LanguageModel(Protocol):
    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Return one non-streaming completion."""


class OrganizationDirectory(Protocol):
    def get_profile(self, organization_id: str) -> OrganizationProfile | None:
        ...


class GenerationRecorder(Protocol):
    def record_generation(self, outcome: "GenerationOutcome") -> None:
        """Persist a finished attempt in a single write."""
