from fastapi import APIRouter
from querylens.api.endpoints import databases, nl_to_sql, progress, query_execution, schema_index

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(databases.router)
api_router.include_router(schema_index.router)
api_router.include_router(nl_to_sql.router)
api_router.include_router(query_execution.router)
api_router.include_router(progress.router)
