import asyncio
import math

import pytest

from beacon.retrieval import (
    EmbeddingProviderError,
    EmbeddingService,
    RetrievalError,
    SqliteChunkRetriever,
    build_chunk_payloads,
    embed_text,
    rank_chunks,
)


class FailingBedrockClient:
    def __init__(self) -> None:
        self.calls = 0

    def embed(self, text: str, dim: int) -> list[float]:
        self.calls += 1
        raise EmbeddingProviderError("simulated bedrock failure")


class SuccessfulBedrockClient:
    def __init__(self) -> None:
        self.calls = 0

    def embed(self, text: str, dim: int) -> list[float]:
        self.calls += 1
        return [0.5 for _ in range(dim)]


def hash_service() -> EmbeddingService:
    return EmbeddingService(mode="hash", aws_region="us-east-1", bedrock_model_id="unused")


def stored_chunk(chunk_id: str, text: str, dim: int = 32, **extra) -> dict[str, object]:
    return {
        "id": chunk_id,
        "document_id": "doc-1",
        "document_name": "Annual Report 2023",
        "document_type": "annual_report",
        "text": text,
        "embedding": embed_text(text, dim),
        **extra,
    }


def test_embedding_service_hash_mode_returns_hash_vectors() -> None:
    result = hash_service().embed("households served", 32)

    assert result.provider == "hash"
    assert result.fallback_used is False
    assert result.warning is None
    assert len(result.vector) == 32
    assert math.isclose(sum(value * value for value in result.vector), 1.0)


def test_embedding_service_rejects_unknown_mode() -> None:
    with pytest.raises(ValueError):
        EmbeddingService(mode="random", aws_region="us-east-1", bedrock_model_id="unused")


def test_embedding_service_hybrid_falls_back_and_trips_circuit_breaker() -> None:
    failing_client = FailingBedrockClient()
    service = EmbeddingService(
        mode="hybrid",
        aws_region="us-east-1",
        bedrock_model_id="test-model",
        bedrock_client=failing_client,  # type: ignore[arg-type]
    )

    first = service.embed("households served", 32)
    second = service.embed("grant outcomes", 32)

    assert first.provider == "hash"
    assert first.fallback_used is True
    assert first.warning is not None
    assert first.warning.get("code") == "embedding_provider_fallback"
    assert second.provider == "hash"
    assert second.fallback_used is True
    assert failing_client.calls == 1
    assert service.describe()["bedrock_available"] is False


def test_embedding_service_bedrock_mode_raises_on_failure() -> None:
    service = EmbeddingService(
        mode="bedrock",
        aws_region="us-east-1",
        bedrock_model_id="test-model",
        bedrock_client=FailingBedrockClient(),  # type: ignore[arg-type]
    )

    with pytest.raises(EmbeddingProviderError):
        service.embed("households served", 32)


def test_embedding_service_bedrock_mode_returns_bedrock_vector_on_success() -> None:
    successful_client = SuccessfulBedrockClient()
    service = EmbeddingService(
        mode="bedrock",
        aws_region="us-east-1",
        bedrock_model_id="test-model",
        bedrock_client=successful_client,  # type: ignore[arg-type]
    )

    result = service.embed("households served", 32)

    assert result.provider == "bedrock"
    assert result.fallback_used is False
    assert len(result.vector) == 32
    assert successful_client.calls == 1


def test_build_chunk_payloads_records_fallback_provider_and_skips_blank_text() -> None:
    service = EmbeddingService(
        mode="hybrid",
        aws_region="us-east-1",
        bedrock_model_id="test-model",
        bedrock_client=FailingBedrockClient(),  # type: ignore[arg-type]
    )

    payloads = build_chunk_payloads(["  Pantry served 500 families.  ", "   "], 32, service)

    assert len(payloads) == 1
    assert payloads[0]["text"] == "Pantry served 500 families."
    assert payloads[0]["embedding_provider"] == "hash"
    assert payloads[0]["chunk_index"] == 1


def test_build_chunk_payloads_requires_minimum_dimension() -> None:
    with pytest.raises(ValueError):
        build_chunk_payloads(["text"], 4)


def test_rank_chunks_orders_by_similarity_and_skips_other_dimensions() -> None:
    query = embed_text("families served by the pantry", 32)
    chunks = [
        stored_chunk("c-board", "Board meeting minutes and bylaws"),
        stored_chunk("c-pantry", "The pantry served families", document_date="2023-05-01T00:00:00"),
        stored_chunk("c-old", "families served by the pantry", dim=64),
    ]

    ranked = rank_chunks(query, chunks, top_k=5)

    assert [chunk.id for chunk in ranked] == ["c-pantry", "c-board"]
    assert 0.0 <= ranked[1].similarity <= ranked[0].similarity <= 1.0
    assert ranked[0].document_date.isoformat() == "2023-05-01"
    assert ranked[0].document_type == "annual_report"
    assert rank_chunks(query, chunks, top_k=1)[0].id == "c-pantry"


def test_sqlite_chunk_retriever_searches_loaded_chunks() -> None:
    loaded: list[str] = []

    def load_chunks(organization_id: str) -> list[dict[str, object]]:
        loaded.append(organization_id)
        return [stored_chunk("c-pantry", "The pantry served families")]

    retriever = SqliteChunkRetriever(embedding_service=hash_service(), embedding_dim=32, load_chunks=load_chunks)

    ranked = asyncio.run(retriever.search("pantry families", "org-1", 3))

    assert loaded == ["org-1"]
    assert [chunk.id for chunk in ranked] == ["c-pantry"]


def test_sqlite_chunk_retriever_wraps_load_failures() -> None:
    def load_chunks(organization_id: str) -> list[dict[str, object]]:
        raise OSError("disk unavailable")

    retriever = SqliteChunkRetriever(embedding_service=hash_service(), embedding_dim=32, load_chunks=load_chunks)

    with pytest.raises(RetrievalError):
        retriever.search_sync("pantry families", "org-1", 3)
