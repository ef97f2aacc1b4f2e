import logging
from typing import Annotated, List

from fastapi import APIRouter, Depends, HTTPException, status

from querylens.ai_feature.schema_index import SchemaIndex, SchemaIndexService
from querylens.api.deps import get_database_repository, get_schema_index, get_schema_service
from querylens.api.errors import status_for
from querylens.core import schemas
from querylens.core.errors import DatabaseNotFound, QueryLensError
from querylens.core.repositories import DatabaseConnectionRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/schema-embeddings", tags=["Schema Index"])

service_dep = Annotated[SchemaIndexService, Depends(get_schema_service)]
index_dep = Annotated[SchemaIndex, Depends(get_schema_index)]
databases_dep = Annotated[DatabaseConnectionRepository, Depends(get_database_repository)]


async def ensure_database(databases: DatabaseConnectionRepository, database_id: int) -> None:
    if await databases.find_by_id(database_id) is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(DatabaseNotFound(database_id)))


# Embed a table description and store it (re-indexing a name replaces it)
@router.post(
    "/index",
    response_model=schemas.SchemaDescriptorResponse,
    status_code=status.HTTP_201_CREATED,
)
async def index_schema(
    request: schemas.SchemaIndexRequest, service: service_dep, databases: databases_dep
):
    await ensure_database(databases, request.database_id)

    try:
        descriptor = await service.index_schema(
            request.database_id,
            request.schema_name,
            request.schema_description,
            request.metadata,
        )
    except QueryLensError as error:
        logger.error(f"Failed to index schema {request.schema_name}: {error}")
        raise HTTPException(status_code=status_for(error), detail=str(error))

    return schemas.SchemaDescriptorResponse.from_descriptor(descriptor)


# Similar schemas with their scores, best first
@router.post("/search", response_model=schemas.SchemaSearchResponse)
async def search_schemas(request: schemas.SchemaSearchRequest, service: service_dep):
    try:
        scored = await service.find_similar(request.database_id, request.query, request.top_k)
    except QueryLensError as error:
        logger.error(f"Schema search failed for database {request.database_id}: {error}")
        raise HTTPException(status_code=status_for(error), detail=str(error))

    results = [
        schemas.SchemaSearchResult(
            **schemas.SchemaDescriptorResponse.from_descriptor(descriptor).model_dump(),
            similarity=similarity,
        )
        for descriptor, similarity in scored
    ]
    return schemas.SchemaSearchResponse(query=request.query, results=results, count=len(results))


@router.get(
    "/database/{database_id}",
    response_model=List[schemas.SchemaDescriptorResponse],
)
async def list_schemas(database_id: int, index: index_dep):
    descriptors = await index.list(database_id)
    return [schemas.SchemaDescriptorResponse.from_descriptor(d) for d in descriptors]


@router.delete("/{descriptor_id}", status_code=status.HTTP_200_OK)
async def delete_schema(descriptor_id: int, index: index_dep):
    if not await index.remove(descriptor_id):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Schema embedding not found")
    return {"message": f"Deleted schema embedding {descriptor_id}"}
