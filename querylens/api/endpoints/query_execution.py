import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from querylens.ai_feature.executor import QueryExecutor
from querylens.ai_feature.service import QueryExecutionPipeline, resolve_request_id
from querylens.api.deps import (
    get_database_repository,
    get_query_execution_pipeline,
    get_query_executor,
)
from querylens.core import schemas
from querylens.core.errors import DatabaseNotFound, UnsupportedDialect
from querylens.core.repositories import DatabaseConnectionRepository, to_connection_profile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/query-execution", tags=["Query Execution"])

pipeline_dep = Annotated[QueryExecutionPipeline, Depends(get_query_execution_pipeline)]

FAILURE_STATUS = {
    schemas.ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    schemas.ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


# Run (already generated or hand written) SQL against a registered database
@router.post(
    "/execute",
    response_model=schemas.QueryExecutionResponse,
    status_code=status.HTTP_200_OK,
)
async def execute(request: schemas.QueryExecutionRequest, pipeline: pipeline_dep):
    response = await pipeline.execute(
        request.database_id,
        request.sql_query,
        timeout_seconds=request.timeout_seconds,
        request_id=resolve_request_id(request.client_request_id),
    )
    if response.success:
        return response

    return JSONResponse(
        status_code=FAILURE_STATUS.get(
            response.error_kind, status.HTTP_500_INTERNAL_SERVER_ERROR
        ),
        content=response.model_dump(mode="json", by_alias=True),
    )


# Probe connectivity before running anything
@router.get(
    "/test-connection/{database_id}",
    response_model=schemas.ConnectionTestResponse,
)
async def test_connection(
    database_id: int,
    databases: Annotated[DatabaseConnectionRepository, Depends(get_database_repository)],
    executor: Annotated[QueryExecutor, Depends(get_query_executor)],
):
    database = await databases.find_by_id(database_id)
    if database is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(DatabaseNotFound(database_id)))

    try:
        connected, message = await executor.test_connection(to_connection_profile(database))
    except UnsupportedDialect as error:
        connected, message = False, str(error)

    return schemas.ConnectionTestResponse(
        database_id=database_id, connected=connected, message=message
    )


@router.get("/status")
async def get_status():
    return {
        "service": "Query Execution Service",
        "status": "UP",
        "message": "Query execution service is running",
    }
