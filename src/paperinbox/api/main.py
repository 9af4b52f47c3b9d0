"""
PaperInbox API - FastAPI backend for the Inbox pipeline
"""

import logging
import os

from dotenv import find_dotenv, load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routes import inbox

logger = logging.getLogger(__name__)

# Load local .env automatically so database and feed settings apply in API mode.
load_dotenv(find_dotenv(usecwd=True), override=False)

app = FastAPI(
    title="PaperInbox API",
    description="API for feed scheduling, inbox triage and mute rules",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "version": "0.1.0"}


app.include_router(inbox.router, prefix="/api", tags=["Inbox"])


@app.on_event("startup")
async def _startup_scheduler():
    if os.getenv("PAPERINBOX_AUTOSTART_SCHEDULER", "false").lower() in ("1", "true", "yes", "y"):
        await inbox.get_runtime().scheduler.start()
        logger.info("Inbox scheduler started with the API")


@app.on_event("shutdown")
async def _shutdown_scheduler():
    runtime = inbox._runtime
    if runtime is not None:
        await runtime.aclose()
        inbox.set_runtime(None)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
