"""FastAPI application: track analysis over HTTP, live metronome over WebSocket."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from metrosync.api import upload, websocket
from metrosync.config import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    upload.close_engine()


app = FastAPI(title="Metrosync", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)
app.include_router(upload.router, prefix="/api")
app.include_router(websocket.router, prefix="/api")


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": app.version}


def run():
    """Console entry point."""
    import uvicorn

    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
