"""
FastAPI application entry point for the RoboPrep backend.
"""

from __future__ import annotations

import uvicorn
from fastapi import FastAPI

from roboprep import admin_routes, routes
from roboprep.config import get_settings


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="RoboPrep Backend (FastAPI)", version="2.1.0")
    app.include_router(routes.router, prefix=settings.api_prefix)
    app.include_router(admin_routes.router, prefix=settings.api_prefix)
    return app


app = create_app()


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run("roboprep.app:app", host=settings.host, port=settings.port)
