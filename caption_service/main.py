from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import uvicorn
import logging

from caption_service.storage.dynamodb import DynamoDBService
from caption_service.storage.filesystem import SessionStorage
from caption_service.captions.jobs import JobRegistry
from caption_service.captions.client import openai_captioner_factory
from caption_service.settings import settings
from caption_service.routers.upload import router as upload_router
from caption_service.routers.caption import router as caption_router
from caption_service.routers.download import router as download_router
from caption_service.exceptions import add_exception_handlers

logging.basicConfig(level=logging.INFO)
log = logging.getLogger("caption-service")

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
        Async context manager for FastAPI application lifecycle events.
        Initializes and closes resources (session store, DynamoDB, job registry) for the application.
    """
    # Initialize resources
    app.state.storage = SessionStorage()
    app.state.db = DynamoDBService()
    app.state.jobs = JobRegistry()
    app.state.captioner_factory = openai_captioner_factory
    log.info(f"Uploads directory: {app.state.storage.uploads_dir}")
    log.info(f"Results directory: {app.state.storage.results_dir}")
    yield
    # Cleanup resources
    app.state.jobs.cancel_all()
    app.state.storage.close()
    app.state.db.close()

# Initialize App
app = FastAPI(
    title=settings.app_title,
    lifespan=lifespan,
    description="Batch image captioning for LoRA training datasets",
)

# Add exception handlers
add_exception_handlers(app)

# CORS - Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add the routers
app.include_router(upload_router)
app.include_router(caption_router)
app.include_router(download_router)

# Check Health
@app.get("/")
def read_root():
    """
        Default end point

    """
    return "Caption Service is running."

if __name__ == "__main__":
    uvicorn.run("caption_service.main:app", host="0.0.0.0", port=8000, reload=True)
