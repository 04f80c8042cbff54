from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from planner.api.routes import planner
from planner.config import settings
from planner.services.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Fails startup when the completion credential is missing.
    settings.require_api_key()
    logger.info("Planner API ready")
    yield


app = FastAPI(
    title="Technical Planner",
    description="Plans software projects with a DeepSeek model and DuckDuckGo research",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(planner.router)


@app.get("/planner/health")
async def health():
    return {"status": "ok", "service": "planner"}
