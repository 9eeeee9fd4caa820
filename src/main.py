# src/main.py
# Responsibility: Application entry point. Configures and launches the FastAPI app.

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from src.config.settings import settings
from src.routers import analysis, crawl_status, urls
from src.services.db import init_schema

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        init_schema()
    except Exception as e:
        print(f"[API] Schema initialization failed: {e}")
    yield


def create_app() -> FastAPI:
    """
    Factory function to create and configure the FastAPI application.
    """
    app = FastAPI(
        title="Page Analysis Crawler",
        description="Queues URLs and reports the structure of each crawled page.",
        version=VERSION,
        debug=settings.SERVER.DEBUG,
        lifespan=lifespan,
    )

    # Register Routers
    app.include_router(urls.router)
    app.include_router(analysis.router)
    app.include_router(crawl_status.router)

    # Health Check
    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "ok", "version": VERSION}

    return app

# Application instance
app = create_app()


def run():
    uvicorn.run(
        "src.main:app",
        host=settings.SERVER.HOST,
        port=settings.SERVER.PORT,
        reload=settings.SERVER.DEBUG
    )


if __name__ == "__main__":
    run()
