"""
Composition root.

Every component gets its collaborators as constructor arguments here, the
routers only ever see fully wired pipelines. Process-wide singletons (HTTP
client, broadcaster, executor) are cached, everything that needs a database
session is built per request.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from querylens.ai_feature.embeddings import EmbeddingClient
from querylens.ai_feature.executor import QueryExecutor
from querylens.ai_feature.generation import GenerationClient
from querylens.ai_feature.progress import Broadcaster, ProgressPublisher
from querylens.ai_feature.providers import ProviderClient
from querylens.ai_feature.schema_index import SchemaIndex, SchemaIndexService, SqlSchemaIndex
from querylens.ai_feature.service import NLToSQLPipeline, QueryExecutionPipeline
from querylens.core.config import settings
from querylens.core.database import get_db
from querylens.core.repositories import (
    DatabaseConnectionRepository,
    SchemaDescriptorRepository,
)

db_dep = Annotated[AsyncSession, Depends(get_db)]

# One hub per process, WebSocket subscribers and pipelines share it
broadcaster = Broadcaster(max_queue_size=settings.PROGRESS_QUEUE_SIZE)


def get_broadcaster() -> Broadcaster:
    return broadcaster


def get_publisher(hub: Annotated[Broadcaster, Depends(get_broadcaster)]) -> ProgressPublisher:
    return ProgressPublisher(hub)


@lru_cache
def get_provider_client() -> ProviderClient:
    return ProviderClient(
        api_key=settings.OPENAI_API_KEY,
        base_url=settings.OPENAI_BASE_URL,
        timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        max_retries=settings.PROVIDER_MAX_RETRIES,
    )


def get_embedding_client(
    provider: Annotated[ProviderClient, Depends(get_provider_client)],
) -> EmbeddingClient:
    return EmbeddingClient(provider, settings.EMBEDDING_MODEL)


def get_generation_client(
    provider: Annotated[ProviderClient, Depends(get_provider_client)],
) -> GenerationClient:
    return GenerationClient(
        provider,
        settings.CHAT_MODEL,
        temperature=settings.CHAT_TEMPERATURE,
        max_tokens=settings.CHAT_MAX_TOKENS,
    )


@lru_cache
def get_query_executor() -> QueryExecutor:
    return QueryExecutor(
        default_timeout=settings.DEFAULT_QUERY_TIMEOUT_SECONDS,
        max_timeout=settings.MAX_QUERY_TIMEOUT_SECONDS,
        connect_timeout=settings.CONNECT_TIMEOUT_SECONDS,
    )


def get_database_repository(db: db_dep) -> DatabaseConnectionRepository:
    return DatabaseConnectionRepository(db)


def get_schema_index(db: db_dep) -> SchemaIndex:
    return SqlSchemaIndex(SchemaDescriptorRepository(db))


def get_schema_service(
    index: Annotated[SchemaIndex, Depends(get_schema_index)],
    embedder: Annotated[EmbeddingClient, Depends(get_embedding_client)],
) -> SchemaIndexService:
    return SchemaIndexService(index, embedder)


def get_nl_to_sql_pipeline(
    databases: Annotated[DatabaseConnectionRepository, Depends(get_database_repository)],
    schema_service: Annotated[SchemaIndexService, Depends(get_schema_service)],
    generator: Annotated[GenerationClient, Depends(get_generation_client)],
    publisher: Annotated[ProgressPublisher, Depends(get_publisher)],
) -> NLToSQLPipeline:
    return NLToSQLPipeline(databases, schema_service, generator, publisher)


def get_query_execution_pipeline(
    databases: Annotated[DatabaseConnectionRepository, Depends(get_database_repository)],
    executor: Annotated[QueryExecutor, Depends(get_query_executor)],
    publisher: Annotated[ProgressPublisher, Depends(get_publisher)],
) -> QueryExecutionPipeline:
    return QueryExecutionPipeline(databases, executor, publisher)


async def close_provider_client() -> None:
    """Close the shared provider HTTP client if one was ever created."""
    if get_provider_client.cache_info().currsize:
        await get_provider_client().aclose()
        get_provider_client.cache_clear()
