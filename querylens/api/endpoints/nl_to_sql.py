import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from querylens.ai_feature.service import NLToSQLPipeline, resolve_request_id
from querylens.api.deps import get_nl_to_sql_pipeline
from querylens.api.errors import status_for
from querylens.core import schemas

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/nl-to-sql", tags=["NL to SQL"])

pipeline_dep = Annotated[NLToSQLPipeline, Depends(get_nl_to_sql_pipeline)]


# Question -> SQL (the SQL is never executed here)
@router.post(
    "/convert",
    response_model=schemas.NLToSQLResponse,
    status_code=status.HTTP_200_OK,
)
async def convert(request: schemas.NLToSQLRequest, pipeline: pipeline_dep):
    request_id = resolve_request_id(request.client_request_id)

    try:
        return await pipeline.convert(
            request.database_id,
            request.natural_language_query,
            top_k=request.top_k,
            request_id=request_id,
        )
    except Exception as error:
        if status_for(error) == status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.exception(f"[Request {request_id}] NL to SQL conversion failed")

        # Same shape as a successful conversion so clients render one thing
        failed = schemas.NLToSQLResponse(
            sql_query="",
            natural_language_query=request.natural_language_query,
            is_valid=False,
            validation_errors=[f"Error: {error}"],
            database_id=request.database_id,
            request_id=request_id,
        )
        return JSONResponse(
            status_code=status_for(error),
            content=failed.model_dump(mode="json", by_alias=True),
        )


@router.get("/status")
async def get_status():
    return {
        "service": "NL to SQL Service",
        "status": "UP",
        "message": "NL to SQL service is running",
    }
