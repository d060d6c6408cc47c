"""CommerceFlow backend - FastAPI Application."""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .routes import catalog_router, chat_router, flows_router, webhooks_router

logging.basicConfig(
    level=str(os.getenv("LOG_LEVEL", "info")).upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="CommerceFlow",
    description="Visual automation flows and chat-driven API planning for a commerce admin",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(flows_router, prefix="/api")
app.include_router(catalog_router, prefix="/api")
app.include_router(chat_router, prefix="/api")
# Webhooks are addressed as `{origin}/webhooks/flows/{flow_id}`.
app.include_router(webhooks_router)


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "commerceflow"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "web.backend.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8080")),
        reload=True,
    )
