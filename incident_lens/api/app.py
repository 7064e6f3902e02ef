from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from incident_lens.api.routes import router, viewer_registry
from incident_lens.core.logging import setup_logging, get_logger

setup_logging()
logger = get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("api_starting")
    yield
    viewer_registry.close_all()
    logger.info("api_shutdown")


app = FastAPI(
    title="Incident Lens API",
    description="Evidence ingestion and on-frame measurement tools for incident video",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api/v1")
