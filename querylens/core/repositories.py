"""
Repositories for the records this service persists.

Each repository wraps one AsyncSession and exposes save / find / delete.
Timestamps are set here, on the write path.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from querylens.core import models, schemas
from querylens.core.schemas import utc_now

logger = logging.getLogger(__name__)


def to_connection_profile(database: models.DatabaseConnection) -> schemas.ConnectionProfile:
    return schemas.ConnectionProfile(
        type=database.database_type,
        host=database.host,
        port=database.port,
        database=database.database_name,
        username=database.username,
        password=database.password,
    )


def to_descriptor(row: models.SchemaEmbedding) -> schemas.SchemaDescriptor:
    return schemas.SchemaDescriptor(
        id=row.id,
        database_id=row.database_id,
        name=row.schema_name,
        description=row.schema_description,
        vector=[float(v) for v in row.embedding or []],
        metadata=row.schema_metadata,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class DatabaseConnectionRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def save(self, database: models.DatabaseConnection) -> models.DatabaseConnection:
        if database.created_at is None:
            database.created_at = utc_now()
        else:
            database.updated_at = utc_now()

        self.db.add(database)
        try:
            await self.db.commit()
        except Exception as error:
            await self.db.rollback()
            logger.error(f"Failed to save database connection {database.name}: {error}")
            raise
        await self.db.refresh(database)
        return database

    async def find_by_id(self, database_id: int) -> Optional[models.DatabaseConnection]:
        query = select(models.DatabaseConnection).where(
            models.DatabaseConnection.id == database_id
        )
        result = await self.db.execute(query)
        return result.scalars().first()

    async def find_all(self) -> List[models.DatabaseConnection]:
        query = select(models.DatabaseConnection).order_by(models.DatabaseConnection.id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def delete(self, database: models.DatabaseConnection) -> None:
        try:
            await self.db.delete(database)
            await self.db.commit()
        except Exception as error:
            await self.db.rollback()
            logger.error(f"Failed to delete database connection {database.id}: {error}")
            raise


class SchemaDescriptorRepository:
    """Stores SchemaDescriptor records as `schema_embeddings` rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def save(self, descriptor: schemas.SchemaDescriptor) -> schemas.SchemaDescriptor:
        """
        Insert a new descriptor, or replace the stored one when `descriptor.id` is set.

        The whole row is rewritten on replace (name, description, vector,
        metadata) so a record is never left half re-indexed.
        """
        row = None
        if descriptor.id is not None:
            row = await self.db.get(models.SchemaEmbedding, descriptor.id)

        if row is None:
            row = models.SchemaEmbedding(created_at=utc_now())
            self.db.add(row)
        else:
            row.updated_at = utc_now()

        row.database_id = descriptor.database_id
        row.schema_name = descriptor.name
        row.schema_description = descriptor.description
        row.embedding = list(descriptor.vector)
        row.schema_metadata = descriptor.metadata

        try:
            await self.db.commit()
        except Exception as error:
            await self.db.rollback()
            logger.error(f"Failed to save schema {descriptor.name}: {error}")
            raise
        await self.db.refresh(row)
        return to_descriptor(row)

    async def find_by_id(self, descriptor_id: int) -> Optional[schemas.SchemaDescriptor]:
        row = await self.db.get(models.SchemaEmbedding, descriptor_id)
        return to_descriptor(row) if row else None

    async def find_by_name(
        self, database_id: int, name: str
    ) -> Optional[schemas.SchemaDescriptor]:
        query = select(models.SchemaEmbedding).where(
            models.SchemaEmbedding.database_id == database_id,
            models.SchemaEmbedding.schema_name == name,
        )
        result = await self.db.execute(query)
        row = result.scalars().first()
        return to_descriptor(row) if row else None

    async def find_all_by_database_id(self, database_id: int) -> List[schemas.SchemaDescriptor]:
        # Insertion order, ranking ties fall back to it
        query = (
            select(models.SchemaEmbedding)
            .where(models.SchemaEmbedding.database_id == database_id)
            .order_by(models.SchemaEmbedding.id)
        )
        result = await self.db.execute(query)
        return [to_descriptor(row) for row in result.scalars().all()]

    async def delete(self, descriptor_id: int) -> bool:
        row = await self.db.get(models.SchemaEmbedding, descriptor_id)
        if row is None:
            return False
        try:
            await self.db.delete(row)
            await self.db.commit()
        except Exception as error:
            await self.db.rollback()
            logger.error(f"Failed to delete schema {descriptor_id}: {error}")
            raise
        return True
