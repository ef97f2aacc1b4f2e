from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from querylens.core.config import settings


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =========================
# Enums
# =========================
class Feature(str, Enum):
    NL_TO_SQL = "NL_TO_SQL"
    QUERY_EXECUTION = "QUERY_EXECUTION"


class StageStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class ConversionStage(str, Enum):
    REQUEST_RECEIVED = "REQUEST_RECEIVED"
    RETRIEVING_SCHEMA = "RETRIEVING_SCHEMA"
    PROMPT_BUILDING = "PROMPT_BUILDING"
    LLM_CALL = "LLM_CALL"
    VALIDATION = "VALIDATION"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class ExecutionStage(str, Enum):
    REQUEST_RECEIVED = "REQUEST_RECEIVED"
    VALIDATED = "VALIDATED"
    CONNECTING = "CONNECTING"
    EXECUTING = "EXECUTING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"
    TIMEOUT = "TIMEOUT"


class ErrorKind(str, Enum):
    """Why an execution failed, carried on the result instead of an exception."""

    VALIDATION = "VALIDATION"
    NOT_FOUND = "NOT_FOUND"
    CONNECTION = "CONNECTION"
    AUTH = "AUTH"
    TIMEOUT = "TIMEOUT"
    SQL_ERROR = "SQL_ERROR"
    CONFIGURATION = "CONFIGURATION"
    UNEXPECTED = "UNEXPECTED"


# Everything on the wire is camelCase, python code keeps snake_case
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =========================
# CORE RECORDS
# =========================
class ConnectionProfile(CamelModel):
    """Where and how to reach a target database. Password is optional."""

    type: str
    host: Optional[str] = None
    port: Optional[int] = None
    database: str
    username: Optional[str] = None
    password: Optional[str] = None


class SchemaDescriptor(CamelModel):
    """
    One indexed table description and its embedding.

    Created on indexing and replaced as a whole by re-indexing, never patched.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: Optional[int] = None
    database_id: int
    name: str
    description: str
    vector: List[float]
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: Optional[datetime] = None


class StageEvent(CamelModel):
    """Broadcast when a pipeline moves from one stage to the next."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    feature: Feature
    request_id: str
    stage: str
    status: StageStatus
    message: str
    data: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=utc_now)


class SqlValidationResult(CamelModel):
    is_valid: bool
    errors: List[str] = []


class QueryResult(CamelModel):
    success: bool
    columns: List[str] = []
    rows: List[Dict[str, Any]] = []
    row_count: int = 0
    execution_time_ms: int = 0
    executed_at: datetime = Field(default_factory=utc_now)
    error_message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


# =========================
# NL -> SQL
# =========================
class NLToSQLRequest(CamelModel):
    database_id: int
    natural_language_query: str = Field(min_length=1)
    top_k: int = Field(default_factory=lambda: settings.DEFAULT_TOP_K, ge=0)
    client_request_id: Optional[str] = None


class RelevantSchema(CamelModel):
    """Retrieved schema context, also what the prompt is built from."""

    schema_name: str
    schema_description: str


class NLToSQLResponse(CamelModel):
    sql_query: str
    natural_language_query: str
    relevant_schemas: List[RelevantSchema] = []
    explanation: Optional[str] = None
    is_valid: bool
    validation_errors: List[str] = []
    database_id: int
    request_id: Optional[str] = None


# =========================
# QUERY EXECUTION
# =========================
class QueryExecutionRequest(CamelModel):
    database_id: int
    sql_query: str
    timeout_seconds: Optional[int] = 30
    client_request_id: Optional[str] = None


class QueryExecutionResponse(CamelModel):
    success: bool
    rows: List[Dict[str, Any]] = []
    columns: List[str] = []
    row_count: int = 0
    execution_time_ms: int = 0
    executed_at: datetime
    error_message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    sql_query: str
    database_id: int
    request_id: str


class ConnectionTestResponse(CamelModel):
    database_id: int
    connected: bool
    message: str


# =========================
# SCHEMA INDEX
# =========================
class SchemaIndexRequest(CamelModel):
    database_id: int
    schema_name: str = Field(min_length=1)
    schema_description: str = Field(min_length=1)
    metadata: Optional[Dict[str, Any]] = None


class SchemaSearchRequest(CamelModel):
    database_id: int
    query: str = Field(min_length=1)
    top_k: int = Field(default_factory=lambda: settings.DEFAULT_TOP_K, ge=0)


class SchemaDescriptorResponse(CamelModel):
    id: int
    database_id: int
    schema_name: str
    schema_description: str
    metadata: Optional[Dict[str, Any]] = None
    dimension: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_descriptor(cls, descriptor: SchemaDescriptor) -> "SchemaDescriptorResponse":
        return cls(
            id=descriptor.id,
            database_id=descriptor.database_id,
            schema_name=descriptor.name,
            schema_description=descriptor.description,
            metadata=descriptor.metadata,
            dimension=len(descriptor.vector),
            created_at=descriptor.created_at,
            updated_at=descriptor.updated_at,
        )


class SchemaSearchResult(SchemaDescriptorResponse):
    similarity: float


class SchemaSearchResponse(CamelModel):
    query: str
    results: List[SchemaSearchResult]
    count: int


# =========================
# DATABASE REGISTRATION
# =========================
class DatabaseCreate(CamelModel):
    name: str = Field(min_length=1, max_length=120)
    database_type: str = Field(min_length=1)
    host: Optional[str] = None
    port: Optional[int] = None
    database_name: str = Field(min_length=1)
    username: Optional[str] = None
    password: Optional[str] = None


class DatabaseResponse(CamelModel):
    id: int
    name: str
    database_type: str
    host: Optional[str] = None
    port: Optional[int] = None
    database_name: str
    username: Optional[str] = None
    has_password: bool
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )
