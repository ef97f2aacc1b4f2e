from typing import Annotated, List

from fastapi import APIRouter, Depends, HTTPException, status

from querylens.api.deps import get_database_repository
from querylens.core import models, schemas
from querylens.core.errors import DatabaseNotFound
from querylens.core.repositories import DatabaseConnectionRepository

router = APIRouter(prefix="/databases", tags=["Databases"])

repository_dep = Annotated[DatabaseConnectionRepository, Depends(get_database_repository)]


# Register a target database (the password is stored, never returned)
@router.post(
    "/",
    response_model=schemas.DatabaseResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_database(database: schemas.DatabaseCreate, databases: repository_dep):
    try:
        return await databases.save(models.DatabaseConnection(**database.model_dump()))
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to register database",
        )


@router.get("/", response_model=List[schemas.DatabaseResponse])
async def list_databases(databases: repository_dep):
    return await databases.find_all()


@router.get("/{database_id}", response_model=schemas.DatabaseResponse)
async def get_database(database_id: int, databases: repository_dep):
    database = await databases.find_by_id(database_id)
    if database is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(DatabaseNotFound(database_id)))
    return database


# Also removes every schema description indexed for it
@router.delete("/{database_id}", status_code=status.HTTP_200_OK)
async def delete_database(database_id: int, databases: repository_dep):
    database = await databases.find_by_id(database_id)
    if database is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, str(DatabaseNotFound(database_id)))

    try:
        await databases.delete(database)
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete database",
        )
    return {"message": f"Deleted database {database_id}"}
