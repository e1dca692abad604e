"""FastAPI app: datastore service registry and dataset metadata optimization, with Bearer auth."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import create_engine

from api.routes import router
from metastore import db
from scripts.keyvault_loader import load_env, require_env


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load env (Key Vault), validate required env, create the metadata engine, then yield."""
    load_env()
    database_url = require_env("METADATA_DATABASE_URL")
    require_env("API_AUTH_TOKEN")
    engine = create_engine(database_url, pool_pre_ping=True)
    db.set_engine(engine)
    db.init_schema()
    yield
    engine.dispose()


app = FastAPI(title="Datastore Toolkit API", lifespan=lifespan)
app.include_router(router)
