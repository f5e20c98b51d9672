"""
Application entry point.

Run locally with:
    uvicorn property_invites.main:app --reload
"""

import logging
import os

from fastapi import FastAPI

from property_invites import __version__
from property_invites.api.routes import health, invites
from property_invites.platform.errors import ErrorHandlerMiddleware, register_exception_handlers

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Build the FastAPI application with middleware and routers."""
    app = FastAPI(title="Property Invites", version=__version__)
    app.add_middleware(ErrorHandlerMiddleware)
    register_exception_handlers(app)
    app.include_router(health.router)
    app.include_router(invites.router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
