from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    String,
    TIMESTAMP,
    Text,
    JSON,
)
from sqlalchemy.orm import relationship

from querylens.core.database import Base


# Timestamps are written by the repositories, there are no ORM lifecycle hooks here.


# =========================
# Database connection profile
# =========================
class DatabaseConnection(Base):
    """
    A target database users can ask questions about:
    - postgresql / postgres
    - mysql
    - sqlite (local files)
    """

    __tablename__ = "database_connections"

    id = Column(Integer, primary_key=True, autoincrement=True)

    name = Column(String, nullable=False)
    database_type = Column(String, nullable=False)  # "postgresql", "mysql", "sqlite"
    host = Column(String, nullable=True)
    port = Column(Integer, nullable=True)
    database_name = Column(String, nullable=False)
    username = Column(String, nullable=True)

    # Optional, execution fails with an auth message when the server wants one
    password = Column(String, nullable=True)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=True)

    # Relationships
    schemas = relationship(
        "SchemaEmbedding",
        back_populates="database",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def has_password(self) -> bool:
        return bool(self.password)


# =========================
# Schema descriptor (text + embedding)
# =========================
class SchemaEmbedding(Base):
    """
    Natural-language description of one table plus its embedding vector.

    Retrieval scans every row of a database and ranks them in memory, so the
    vector is kept as a plain JSON array of floats.
    """

    __tablename__ = "schema_embeddings"

    id = Column(Integer, primary_key=True, autoincrement=True)

    database_id = Column(
        Integer,
        ForeignKey("database_connections.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    schema_name = Column(String, nullable=False)
    schema_description = Column(Text, nullable=False)
    embedding = Column(JSON, nullable=False)
    schema_metadata = Column("metadata", JSON, nullable=True)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=True)

    # Relationships
    database = relationship("DatabaseConnection", back_populates="schemas")
