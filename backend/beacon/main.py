from contextlib import asynccontextmanager
from functools import lru_cache
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from beacon.api.routers.compliance import build_compliance_router
from beacon.api.routers.generation import build_generation_router
from beacon.api.routers.proposals import build_proposals_router
from beacon.api.routers.system import router as system_router
from beacon.config import settings
from beacon.db import init_db, list_chunks
from beacon.enforcement.collaborators import LanguageModel, Retriever
from beacon.nova_runtime import BedrockLanguageModel
from beacon.observability import (
    configure_logging,
    normalize_request_id,
    reset_request_id,
    sanitize_for_logging,
    set_request_id,
)
from beacon.retrieval import EmbeddingService, SqliteChunkRetriever
from beacon.version import APP_VERSION

logger = logging.getLogger("beacon.api")


@lru_cache(maxsize=1)
def _cached_language_model() -> BedrockLanguageModel:
    return BedrockLanguageModel(settings=settings)


def get_language_model() -> LanguageModel:
    return _cached_language_model()


@lru_cache(maxsize=1)
def _cached_embedding_service() -> EmbeddingService:
    return EmbeddingService(
        mode=settings.embedding_mode,
        aws_region=settings.aws_region,
        bedrock_model_id=settings.bedrock_embedding_model_id,
    )


def get_embedding_service() -> EmbeddingService:
    return _cached_embedding_service()


def get_retriever() -> Retriever:
    return SqliteChunkRetriever(
        embedding_service=get_embedding_service(),
        embedding_dim=settings.embedding_dim,
        load_chunks=list_chunks,
    )


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(settings.log_level)
    logger.info("application_startup", extra={"event": "application_startup", "environment": settings.app_env})
    init_db()
    yield
    logger.info("application_shutdown", extra={"event": "application_shutdown"})


def create_app() -> FastAPI:
    cors_origins = settings.cors_origins_list
    if settings.cors_allow_credentials and any(origin == "*" for origin in cors_origins):
        raise RuntimeError("Invalid CORS_ORIGINS: wildcard '*' is not allowed when credentials are enabled.")

    app = FastAPI(title=settings.app_name, version=APP_VERSION, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["Authorization", "Content-Type", settings.request_id_header],
        expose_headers=[settings.request_id_header, "X-Poll-Interval-Seconds"],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = normalize_request_id(request.headers.get(settings.request_id_header))
        request.state.request_id = request_id
        token = set_request_id(request_id)
        started = time.perf_counter()

        logger.info(
            "request_started",
            extra={
                "event": "request_started",
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "query": sanitize_for_logging(dict(request.query_params)),
                "client_ip": request.client.host if request.client else None,
            },
        )

        try:
            response = await call_next(request)
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            response.headers[settings.request_id_header] = request_id
            logger.info(
                "request_completed",
                extra={
                    "event": "request_completed",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                },
            )
            return response
        except Exception:
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.exception(
                "request_failed",
                extra={
                    "event": "request_failed",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": elapsed_ms,
                },
            )
            raise
        finally:
            reset_request_id(token)

    # Getters are looked up at call time so tests can swap them on this module.
    app.include_router(system_router)
    app.include_router(build_proposals_router(get_embedding_service=lambda: get_embedding_service()))
    app.include_router(
        build_generation_router(
            get_language_model=lambda: get_language_model(),
            get_retriever=lambda: get_retriever(),
        )
    )
    app.include_router(build_compliance_router())
    return app


app = create_app()
