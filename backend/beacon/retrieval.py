from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import math
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Literal

from beacon.enforcement.models import RankedChunk

logger = logging.getLogger("beacon.retrieval")

EmbeddingMode = Literal["hash", "bedrock", "hybrid"]


@dataclass(frozen=True)
class EmbeddingResult:
    vector: list[float]
    provider: str
    fallback_used: bool = False
    warning: dict[str, object] | None = None


class EmbeddingProviderError(RuntimeError):
    """Raised when an embedding provider cannot produce vectors."""


class RetrievalError(RuntimeError):
    """Raised when the chunk store cannot be searched."""


def _is_numeric_vector(value: object) -> bool:
    if not isinstance(value, list) or not value:
        return False
    return all(isinstance(item, (int, float)) for item in value)


def _normalize_vector(vector: list[float]) -> list[float]:
    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0:
        return vector
    return [v / norm for v in vector]


class BedrockEmbeddingClient:
    def __init__(
        self,
        *,
        aws_region: str,
        model_id: str,
        client: Any | None = None,
    ) -> None:
        self._aws_region = aws_region
        self._model_id = model_id
        self._client = client

    @property
    def model_id(self) -> str:
        return self._model_id

    def embed(self, text: str, dim: int) -> list[float]:
        payload: dict[str, object] = {
            "inputText": text,
            "normalize": True,
        }
        if dim > 0:
            payload["dimensions"] = dim

        client = self._get_client()
        response = client.invoke_model(
            modelId=self._model_id,
            contentType="application/json",
            accept="application/json",
            body=json.dumps(payload).encode("utf-8"),
        )
        body = response.get("body")
        if body is None:
            raise EmbeddingProviderError("Bedrock embedding response body is missing.")

        raw = body.read() if hasattr(body, "read") else body
        if isinstance(raw, bytes):
            raw_text = raw.decode("utf-8")
        elif isinstance(raw, str):
            raw_text = raw
        else:
            raise EmbeddingProviderError("Bedrock embedding response body type is unsupported.")

        try:
            parsed = json.loads(raw_text)
        except json.JSONDecodeError as exc:
            raise EmbeddingProviderError("Bedrock embedding response was not valid JSON.") from exc

        return _normalize_vector(self._extract_vector(parsed))

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        try:
            import boto3  # type: ignore
        except ImportError as exc:
            raise EmbeddingProviderError("boto3 is required for Bedrock embeddings.") from exc

        self._client = boto3.client("bedrock-runtime", region_name=self._aws_region)
        return self._client

    @staticmethod
    def _extract_vector(payload: object) -> list[float]:
        if isinstance(payload, dict):
            direct = payload.get("embedding")
            if _is_numeric_vector(direct):
                return [float(item) for item in direct]

            embeddings = payload.get("embeddings")
            if isinstance(embeddings, list) and embeddings:
                first = embeddings[0]
                if _is_numeric_vector(first):
                    return [float(item) for item in first]
                if isinstance(first, dict):
                    nested = first.get("embedding")
                    if _is_numeric_vector(nested):
                        return [float(item) for item in nested]

        raise EmbeddingProviderError("Bedrock embedding response did not contain an embedding vector.")


class EmbeddingService:
    """Embeds text with deterministic hashing, Bedrock, or Bedrock with a hash fallback."""

    _VALID_MODES = {"hash", "bedrock", "hybrid"}

    def __init__(
        self,
        *,
        mode: str,
        aws_region: str,
        bedrock_model_id: str,
        bedrock_client: BedrockEmbeddingClient | None = None,
    ) -> None:
        normalized_mode = mode.strip().lower()
        if normalized_mode not in self._VALID_MODES:
            raise ValueError("Embedding mode must be one of: hash, bedrock, hybrid.")

        self.mode: EmbeddingMode = normalized_mode  # type: ignore[assignment]
        self._aws_region = aws_region
        self._bedrock_model_id = bedrock_model_id.strip()
        self._bedrock_client = bedrock_client
        self._bedrock_unavailable_reason: str | None = None

    def describe(self) -> dict[str, object]:
        return {
            "mode": self.mode,
            "bedrock_model_id": self._bedrock_model_id or None,
            "bedrock_available": self._bedrock_unavailable_reason is None,
        }

    def embed(self, text: str, dim: int) -> EmbeddingResult:
        if self.mode == "hash":
            return EmbeddingResult(vector=embed_text(text, dim), provider="hash")

        try:
            return EmbeddingResult(vector=self._embed_with_bedrock(text, dim), provider="bedrock")
        except Exception as exc:
            if self.mode == "bedrock":
                if isinstance(exc, EmbeddingProviderError):
                    raise
                raise EmbeddingProviderError(f"Bedrock embedding failed: {exc}") from exc

            return EmbeddingResult(
                vector=embed_text(text, dim),
                provider="hash",
                fallback_used=True,
                warning={
                    "code": "embedding_provider_fallback",
                    "message": "Bedrock embedding unavailable; using deterministic hash embeddings.",
                    "details": {"mode": self.mode, "fallback_provider": "hash", "error": str(exc)},
                },
            )

    def _embed_with_bedrock(self, text: str, dim: int) -> list[float]:
        if not self._bedrock_model_id:
            raise EmbeddingProviderError("Bedrock embedding model ID is not configured.")
        if self._bedrock_unavailable_reason is not None:
            raise EmbeddingProviderError(self._bedrock_unavailable_reason)

        if self._bedrock_client is None:
            self._bedrock_client = BedrockEmbeddingClient(
                aws_region=self._aws_region,
                model_id=self._bedrock_model_id,
            )

        try:
            return self._bedrock_client.embed(text, dim)
        except Exception as exc:
            self._bedrock_unavailable_reason = str(exc)
            logger.warning(
                "embedding_provider_bedrock_unavailable",
                extra={
                    "event": "embedding_provider_bedrock_unavailable",
                    "mode": self.mode,
                    "model_id": self._bedrock_model_id,
                    "error": str(exc),
                },
            )
            if isinstance(exc, EmbeddingProviderError):
                raise
            raise EmbeddingProviderError(f"Bedrock embedding failed: {exc}") from exc


def _tokenize(text: str) -> list[str]:
    return re.findall(r"[a-z0-9]+", text.lower())


def embed_text(text: str, dim: int) -> list[float]:
    vec = [0.0] * dim
    tokens = _tokenize(text)
    if not tokens:
        return vec

    for token in tokens:
        digest = hashlib.sha256(token.encode("utf-8")).digest()
        index = int.from_bytes(digest[:4], "big") % dim
        sign = 1.0 if digest[4] % 2 == 0 else -1.0
        vec[index] += sign

    norm = math.sqrt(sum(v * v for v in vec))
    if norm == 0:
        return vec
    return [v / norm for v in vec]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b):
        raise ValueError("Vector dimensions do not match")
    return float(sum(x * y for x, y in zip(a, b)))


def build_chunk_payloads(
    texts: list[str],
    embedding_dim: int,
    embedding_service: EmbeddingService | None = None,
) -> list[dict[str, object]]:
    if embedding_dim < 8:
        raise ValueError("embedding_dim must be >= 8")
    payloads: list[dict[str, object]] = []
    for index, text in enumerate(texts, start=1):
        cleaned = text.strip()
        if not cleaned:
            continue
        result = (
            embedding_service.embed(cleaned, embedding_dim)
            if embedding_service is not None
            else EmbeddingResult(vector=embed_text(cleaned, embedding_dim), provider="hash")
        )
        payloads.append(
            {
                "chunk_index": index,
                "text": cleaned,
                "embedding": result.vector,
                "embedding_provider": result.provider,
            }
        )
    return payloads


def _parse_date(value: object) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def rank_chunks(
    query_vector: list[float],
    chunks: list[dict[str, object]],
    top_k: int,
) -> list[RankedChunk]:
    """Score stored chunks against the query, best first. Chunks of another dimension are skipped."""
    scored: list[tuple[float, dict[str, object]]] = []
    for chunk in chunks:
        embedding = chunk.get("embedding")
        if not isinstance(embedding, list) or len(embedding) != len(query_vector):
            continue
        scored.append((cosine_similarity(query_vector, embedding), chunk))
    scored.sort(key=lambda item: item[0], reverse=True)

    ranked: list[RankedChunk] = []
    for similarity, chunk in scored[: max(0, top_k)]:
        ranked.append(
            RankedChunk(
                id=str(chunk["id"]),
                document_id=str(chunk["document_id"]),
                document_name=str(chunk.get("document_name") or chunk["document_id"]),
                document_type=str(chunk.get("document_type") or "other"),
                text=str(chunk["text"]),
                embedding=list(chunk["embedding"]),  # type: ignore[arg-type]
                similarity=round(max(0.0, min(1.0, similarity)), 4),
                program_area=chunk.get("program_area") or None,  # type: ignore[arg-type]
                document_date=_parse_date(chunk.get("document_date")),
            )
        )
    return ranked


class SqliteChunkRetriever:
    """Vector search over an organization's stored chunks."""

    def __init__(
        self,
        *,
        embedding_service: EmbeddingService,
        embedding_dim: int,
        load_chunks: Callable[[str], list[dict[str, object]]],
    ) -> None:
        self._embedding_service = embedding_service
        self._embedding_dim = embedding_dim
        self._load_chunks = load_chunks

    def search_sync(self, query_text: str, organization_id: str, top_k: int) -> list[RankedChunk]:
        try:
            query_vector = self._embedding_service.embed(query_text, self._embedding_dim).vector
            chunks = self._load_chunks(organization_id)
        except Exception as exc:
            raise RetrievalError(f"Chunk search failed: {exc}") from exc
        ranked = rank_chunks(query_vector, chunks, top_k)
        logger.info(
            "chunks_retrieved",
            extra={
                "event": "chunks_retrieved",
                "organization_id": organization_id,
                "candidate_count": len(chunks),
                "returned_count": len(ranked),
                "top_similarity": ranked[0].similarity if ranked else None,
            },
        )
        return ranked

    async def search(self, query_text: str, organization_id: str, top_k: int) -> list[RankedChunk]:
        return await asyncio.to_thread(self.search_sync, query_text, organization_id, top_k)
