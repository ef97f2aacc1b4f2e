"""
SCHEMA INDEX MODULE - Store schema descriptors and find the relevant ones

Data Flow:
    index:    description -> embed() -> SchemaDescriptor -> SchemaIndex.add()
    retrieve: question -> embed() -> SchemaIndex.search() -> top-K descriptors

`SchemaIndex.search` is a linear scan ranked in memory. A real
nearest-neighbour store can replace it by overriding `search` alone.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from querylens.ai_feature import similarity
from querylens.ai_feature.embeddings import EmbeddingClient
from querylens.core.repositories import SchemaDescriptorRepository
from querylens.core.schemas import RelevantSchema, SchemaDescriptor, utc_now

logger = logging.getLogger(__name__)

ScoredDescriptor = Tuple[SchemaDescriptor, float]


class SchemaIndex(ABC):
    """Per-database collection of schema descriptors."""

    @abstractmethod
    async def add(self, descriptor: SchemaDescriptor) -> SchemaDescriptor:
        """Store a descriptor. Re-indexing a name replaces the stored record."""

    @abstractmethod
    async def get(self, descriptor_id: int) -> Optional[SchemaDescriptor]: ...

    @abstractmethod
    async def list(self, database_id: int) -> List[SchemaDescriptor]:
        """Descriptors of one database in insertion order."""

    @abstractmethod
    async def remove(self, descriptor_id: int) -> bool: ...

    async def search(
        self, database_id: int, query_vector: List[float], top_k: int
    ) -> List[ScoredDescriptor]:
        candidates = await self.list(database_id)
        return similarity.score(
            query_vector, candidates, top_k, vector_of=lambda descriptor: descriptor.vector
        )


class InMemorySchemaIndex(SchemaIndex):
    """
    Process-local index.

    Writes are serialized by a lock, reads work on a snapshot so they never
    wait for an indexing call.
    """

    def __init__(self):
        self._records: Dict[int, SchemaDescriptor] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def add(self, descriptor: SchemaDescriptor) -> SchemaDescriptor:
        async with self._lock:
            existing = self._find_by_name(descriptor.database_id, descriptor.name)
            if existing is not None:
                stored = descriptor.model_copy(
                    update={
                        "id": existing.id,
                        "created_at": existing.created_at,
                        "updated_at": utc_now(),
                    }
                )
            else:
                stored = descriptor.model_copy(update={"id": self._next_id})
                self._next_id += 1

            # Rebuild the dict so concurrent readers keep their old snapshot
            records = dict(self._records)
            records[stored.id] = stored
            self._records = records
            return stored

    async def get(self, descriptor_id: int) -> Optional[SchemaDescriptor]:
        return self._records.get(descriptor_id)

    async def list(self, database_id: int) -> List[SchemaDescriptor]:
        snapshot = self._records
        return [d for _, d in sorted(snapshot.items()) if d.database_id == database_id]

    async def remove(self, descriptor_id: int) -> bool:
        async with self._lock:
            if descriptor_id not in self._records:
                return False
            records = dict(self._records)
            del records[descriptor_id]
            self._records = records
            return True

    def _find_by_name(self, database_id: int, name: str) -> Optional[SchemaDescriptor]:
        for descriptor in self._records.values():
            if descriptor.database_id == database_id and descriptor.name == name:
                return descriptor
        return None


class SqlSchemaIndex(SchemaIndex):
    """Index backed by the `schema_embeddings` table."""

    def __init__(self, repository: SchemaDescriptorRepository):
        self.repository = repository

    async def add(self, descriptor: SchemaDescriptor) -> SchemaDescriptor:
        existing = await self.repository.find_by_name(descriptor.database_id, descriptor.name)
        if existing is not None:
            descriptor = descriptor.model_copy(update={"id": existing.id})
        return await self.repository.save(descriptor)

    async def get(self, descriptor_id: int) -> Optional[SchemaDescriptor]:
        return await self.repository.find_by_id(descriptor_id)

    async def list(self, database_id: int) -> List[SchemaDescriptor]:
        return await self.repository.find_all_by_database_id(database_id)

    async def remove(self, descriptor_id: int) -> bool:
        return await self.repository.delete(descriptor_id)


class SchemaIndexService:
    """
    Indexing and retrieval on top of a SchemaIndex.

    Example:
        service = SchemaIndexService(index, embedder)
        await service.index_schema(1, "orders", "orders table with id, customer_id, total")
        await service.retrieve_relevant_schemas(1, "show me all orders", top_k=5)
    """

    def __init__(self, index: SchemaIndex, embedder: EmbeddingClient):
        self.index = index
        self.embedder = embedder

    async def index_schema(
        self,
        database_id: int,
        schema_name: str,
        schema_description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SchemaDescriptor:
        vector = await self.embedder.embed(schema_description)
        descriptor = await self.index.add(
            SchemaDescriptor(
                database_id=database_id,
                name=schema_name,
                description=schema_description,
                vector=vector,
                metadata=metadata,
            )
        )
        logger.info(
            f"Indexed schema '{schema_name}' for database {database_id} "
            f"({len(vector)} dimensions)"
        )
        return descriptor

    async def find_similar(
        self, database_id: int, query: str, top_k: int
    ) -> List[ScoredDescriptor]:
        query_vector = await self.embedder.embed(query)
        return await self.index.search(database_id, query_vector, top_k)

    async def retrieve_relevant_schemas(
        self, database_id: int, query: str, top_k: int
    ) -> List[RelevantSchema]:
        """The "retrieval" in RAG: schema context for the prompt."""
        scored = await self.find_similar(database_id, query, top_k)
        return [
            RelevantSchema(
                schema_name=descriptor.name,
                schema_description=descriptor.description,
            )
            for descriptor, _ in scored
        ]
