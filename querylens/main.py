import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
import alembic.config
import alembic.command
from querylens.core.config import settings
from querylens.core.database import engine
from querylens.api.deps import close_provider_client, get_provider_client
from querylens.api.router import api_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def run_migrations():
    """Sync function to run migrations"""
    alembic_cfg = alembic.config.Config("alembic.ini")
    alembic.command.upgrade(alembic_cfg, "head")


# Close the provider client and the engine once everything is done
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Apply any pending migrations automatically when the app starts
    if settings.RUN_MIGRATIONS:
        try:
            await asyncio.to_thread(run_migrations)
            logger.info("Migrations applied successfully (or already up-to-date)")
        except Exception as e:
            logger.error(f"Migration error during startup: {e}")

    if not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY is not set, conversion and indexing will fail")

    yield
    await close_provider_client()
    await engine.dispose()


app = FastAPI(title="QueryLens NL to SQL API", lifespan=lifespan)

# Include the master router containing all our endpoints
app.include_router(api_router)


@app.get("/")
async def root():
    return {"message": "Welcome to the QueryLens NL to SQL API"}


@app.get("/health")
async def health():
    return {
        "status": "UP",
        "providerConfigured": get_provider_client().is_configured(),
    }
