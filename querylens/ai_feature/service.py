"""Orchestration layer.

NL -> SQL flow:
1. Look up the target database
2. Retrieve semantic schema context
3. Build the prompt
4. Generate SQL
5. Validate SQL safety (a failure here is reported, not fatal)

Execution flow:
1. Validate SQL safety (a failure here is fatal)
2. Look up the target database
3. Connect read-only, execute under a timeout, materialize rows

Both flows broadcast one progress event per stage transition.
"""

import logging
import re
import uuid
from typing import Any, Dict, Optional

from querylens.ai_feature import prompts, sql_validator
from querylens.ai_feature.executor import QueryExecutor, clamp_timeout
from querylens.ai_feature.generation import GenerationClient
from querylens.ai_feature.progress import PipelineLogger, ProgressPublisher
from querylens.ai_feature.schema_index import SchemaIndexService
from querylens.core.errors import (
    DatabaseNotFound,
    GenerationFailure,
    QueryLensError,
    RetrievalFailure,
    UnsupportedDialect,
)
from querylens.core.repositories import DatabaseConnectionRepository, to_connection_profile
from querylens.core.schemas import (
    ConversionStage,
    ErrorKind,
    ExecutionStage,
    Feature,
    NLToSQLResponse,
    QueryExecutionResponse,
    QueryResult,
)

logger = logging.getLogger(__name__)

_OPENING_FENCE = re.compile(r"^```(?:sql)?\s*", re.IGNORECASE)
_CLOSING_FENCE = re.compile(r"\s*```\s*$")


def resolve_request_id(client_request_id: Optional[str]) -> str:
    """Use the caller's correlation id when given, otherwise a fresh UUID."""
    if client_request_id and client_request_id.strip():
        return client_request_id.strip()
    return str(uuid.uuid4())


def clean_sql(sql: Optional[str]) -> str:
    """
    Strip what chat models like to wrap SQL in.

    Example:
        "```sql\\nSELECT 1\\n```" -> "SELECT 1"
        '"SELECT 1"'              -> "SELECT 1"
    """
    if sql is None:
        return ""

    cleaned = _OPENING_FENCE.sub("", sql.strip())
    cleaned = _CLOSING_FENCE.sub("", cleaned).strip()

    # One layer of surrounding quotes
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in ("'", '"'):
        cleaned = cleaned[1:-1]

    return cleaned.strip()


class NLToSQLPipeline:
    """
    REQUEST_RECEIVED -> RETRIEVING_SCHEMA -> PROMPT_BUILDING -> LLM_CALL
    -> VALIDATION -> COMPLETED, or ERROR from any stage before VALIDATION.
    """

    def __init__(
        self,
        databases: DatabaseConnectionRepository,
        schema_service: SchemaIndexService,
        generator: GenerationClient,
        publisher: ProgressPublisher,
    ):
        self.databases = databases
        self.schema_service = schema_service
        self.generator = generator
        self.publisher = publisher

    async def convert(
        self,
        database_id: int,
        natural_language_query: str,
        top_k: int = 5,
        request_id: Optional[str] = None,
    ) -> NLToSQLResponse:
        """
        Convert a question into SQL for one registered database.

        Args:
            database_id: Registered database the question is about
            natural_language_query: The question, in plain language
            top_k: How many schema descriptions to put in the prompt
            request_id: Correlation id for progress events (generated if None)

        Returns:
            NLToSQLResponse, `is_valid=False` when the generated SQL fails validation

        Raises:
            DatabaseNotFound: unknown database id
            RetrievalFailure / ProviderError / ConfigurationError: retrieval failed
            GenerationFailure / ProviderError / ConfigurationError: generation failed
        """
        request_id = resolve_request_id(request_id)
        tracker = PipelineLogger(request_id, Feature.NL_TO_SQL, self.publisher)

        tracker.progress(
            ConversionStage.REQUEST_RECEIVED.value,
            "Received NL to SQL conversion request",
            {"databaseId": database_id, "query": natural_language_query, "topK": top_k},
        )

        # Step 1: the database must exist
        try:
            database = await self.databases.find_by_id(database_id)
        except Exception as e:
            self._fail(tracker, "DATABASE_LOOKUP", f"Database lookup failed: {e}", database_id)
            raise RetrievalFailure(f"Database lookup failed: {e}") from e

        if database is None:
            error = DatabaseNotFound(database_id)
            self._fail(tracker, "DATABASE_LOOKUP", str(error), database_id)
            raise error

        # Step 2: retrieval
        tracker.progress(
            ConversionStage.RETRIEVING_SCHEMA.value,
            "Retrieving relevant schema context",
            {"databaseId": database_id},
        )
        try:
            relevant_schemas = await self.schema_service.retrieve_relevant_schemas(
                database_id, natural_language_query, top_k
            )
        except QueryLensError as e:
            self._fail(tracker, "RETRIEVAL", f"Schema retrieval failed: {e}", database_id)
            raise
        except Exception as e:
            self._fail(tracker, "RETRIEVAL", f"Schema retrieval failed: {e}", database_id)
            raise RetrievalFailure(f"Schema retrieval failed: {e}") from e

        # Step 3: prompt
        tracker.progress(
            ConversionStage.PROMPT_BUILDING.value,
            "Building prompt with schema context",
            {"schemaCount": len(relevant_schemas)},
        )
        try:
            system_prompt = prompts.build_system_prompt(database.database_type)
            user_prompt = prompts.build_user_prompt(natural_language_query, relevant_schemas)
        except Exception as e:
            self._fail(tracker, "PROMPT_BUILDING", f"Prompt building failed: {e}", database_id)
            raise GenerationFailure(f"Prompt building failed: {e}") from e

        # Step 4: generation
        tracker.progress(ConversionStage.LLM_CALL.value, "Generating SQL with the language model")
        try:
            generated_sql = await self.generator.generate(user_prompt, system_prompt)
        except QueryLensError as e:
            self._fail(tracker, "GENERATION", f"LLM generation failed: {e}", database_id)
            raise
        except Exception as e:
            self._fail(tracker, "GENERATION", f"LLM generation failed: {e}", database_id)
            raise GenerationFailure(f"LLM generation failed: {e}") from e

        # Step 5: clean + validate, an invalid result is still returned
        try:
            sql = clean_sql(generated_sql)
            validation = sql_validator.validate(sql)
        except Exception as e:
            self._fail(tracker, "VALIDATION", f"SQL validation failed: {e}", database_id)
            raise GenerationFailure(f"SQL validation failed: {e}") from e
        tracker.progress(
            ConversionStage.VALIDATION.value,
            "Validating generated SQL",
            {"isValid": validation.is_valid, "errorCount": len(validation.errors)},
        )
        if not validation.is_valid:
            logger.warning(
                f"[Request {request_id}] Generated SQL failed validation: {validation.errors}"
            )

        response = NLToSQLResponse(
            sql_query=sql,
            natural_language_query=natural_language_query,
            relevant_schemas=relevant_schemas,
            explanation=prompts.build_explanation(natural_language_query, sql, relevant_schemas),
            is_valid=validation.is_valid,
            validation_errors=validation.errors,
            database_id=database_id,
            request_id=request_id,
        )

        tracker.success(
            ConversionStage.COMPLETED.value,
            "NL to SQL conversion completed",
            {"isValid": validation.is_valid, "schemaCount": len(relevant_schemas)},
        )
        return response

    def _fail(self, tracker: PipelineLogger, failed_stage: str, message: str, database_id: int):
        tracker.error(
            ConversionStage.ERROR.value,
            message,
            {"failedStage": failed_stage, "databaseId": database_id},
        )


class QueryExecutionPipeline:
    """
    REQUEST_RECEIVED -> VALIDATED -> CONNECTING -> EXECUTING
    -> COMPLETED | ERROR | TIMEOUT.

    Never raises for execution problems, they end up in the response.
    """

    STAGE_MESSAGES = {
        ExecutionStage.CONNECTING: "Opening read-only connection",
        ExecutionStage.EXECUTING: "Executing query",
    }

    def __init__(
        self,
        databases: DatabaseConnectionRepository,
        executor: QueryExecutor,
        publisher: ProgressPublisher,
    ):
        self.databases = databases
        self.executor = executor
        self.publisher = publisher

    async def execute(
        self,
        database_id: int,
        sql_query: str,
        timeout_seconds: Optional[int] = None,
        request_id: Optional[str] = None,
    ) -> QueryExecutionResponse:
        """
        Run a SQL query against a registered database.

        Args:
            database_id: Registered database to run against
            sql_query: SELECT statement, validated before anything else
            timeout_seconds: Statement timeout, clamped to 1..300 (None/0 -> 30)
            request_id: Correlation id for progress events (generated if None)

        Returns:
            QueryExecutionResponse, `success=False` with an error kind on failure
        """
        request_id = resolve_request_id(request_id)
        tracker = PipelineLogger(request_id, Feature.QUERY_EXECUTION, self.publisher)
        effective_timeout = clamp_timeout(
            timeout_seconds, self.executor.default_timeout, self.executor.max_timeout
        )

        def respond(result: QueryResult) -> QueryExecutionResponse:
            return QueryExecutionResponse(
                **result.model_dump(),
                sql_query=sql_query,
                database_id=database_id,
                request_id=request_id,
            )

        def fail(kind: ErrorKind, message: str, data: Optional[Dict[str, Any]] = None):
            stage = ExecutionStage.TIMEOUT if kind == ErrorKind.TIMEOUT else ExecutionStage.ERROR
            tracker.error(stage.value, message, {"errorKind": kind.value, **(data or {})})
            return respond(QueryResult(success=False, error_message=message, error_kind=kind))

        tracker.progress(
            ExecutionStage.REQUEST_RECEIVED.value,
            "Received query execution request",
            {"databaseId": database_id, "timeoutSeconds": effective_timeout},
        )

        # Step 1: validation is fatal here, the connection is never opened
        validation = sql_validator.validate(sql_query)
        if not validation.is_valid:
            return fail(
                ErrorKind.VALIDATION,
                "SQL validation failed: " + ", ".join(validation.errors),
                {"errors": validation.errors},
            )
        tracker.progress(ExecutionStage.VALIDATED.value, "SQL passed validation")

        # Step 2: the database must exist
        try:
            database = await self.databases.find_by_id(database_id)
        except Exception as e:
            logger.exception(f"[Request {request_id}] Database lookup failed")
            return fail(ErrorKind.UNEXPECTED, f"Unexpected error: {e}")
        if database is None:
            return fail(ErrorKind.NOT_FOUND, str(DatabaseNotFound(database_id)))

        # Step 3: connect + execute
        try:
            result = await self.executor.execute(
                to_connection_profile(database),
                sql_query,
                effective_timeout,
                request_id,
                on_stage=lambda stage, data: tracker.progress(
                    stage.value, self.STAGE_MESSAGES.get(stage, stage.value), data
                ),
            )
        except UnsupportedDialect as e:
            return fail(ErrorKind.CONFIGURATION, str(e))
        except Exception as e:
            logger.exception(f"[Request {request_id}] Unexpected execution error")
            return fail(ErrorKind.UNEXPECTED, f"Unexpected error: {e}")

        if not result.success:
            stage = (
                ExecutionStage.TIMEOUT
                if result.error_kind == ErrorKind.TIMEOUT
                else ExecutionStage.ERROR
            )
            tracker.error(
                stage.value,
                result.error_message or "Query execution failed",
                {"errorKind": result.error_kind.value if result.error_kind else None},
            )
            return respond(result)

        tracker.success(
            ExecutionStage.COMPLETED.value,
            "Query executed successfully",
            {"rowCount": result.row_count, "executionTimeMs": result.execution_time_ms},
        )
        return respond(result)
