from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from moderation.api import videos
from moderation.database import engine, Base, SessionLocal
from moderation.config import get_settings
from moderation.services.events import EventHub
from moderation.services.pipeline import PipelineOrchestrator, create_orchestrator
from typing import Optional
# Import all models to ensure they're registered with Base
from moderation.models import Video
import logging

settings = get_settings()

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def create_app(
    orchestrator: Optional[PipelineOrchestrator] = None,
    hub: Optional[EventHub] = None
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.orchestrator.close()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if orchestrator is None:
        # Create tables
        Base.metadata.create_all(bind=engine)
        hub = hub or EventHub()
        orchestrator = create_orchestrator(SessionLocal, hub, settings)
    app.state.hub = hub if hub is not None else orchestrator.broadcaster.hub
    app.state.orchestrator = orchestrator

    app.include_router(videos.router, prefix="/api/videos", tags=["videos"])
    app.include_router(videos.ws_router, tags=["events"])

    @app.get("/")
    def root():
        return {
            "app": settings.APP_NAME,
            "version": settings.VERSION,
            "status": "running",
            "environment": settings.ENVIRONMENT
        }

    @app.get("/health")
    def health_check():
        return {"status": "healthy"}

    return app


app = create_app()
