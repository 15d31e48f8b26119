"""
asgi.py -- Application assembly for the tenant auth service.

This is the ONLY file that imports from both api/ and web/. It joins the two
independent layers into a single ASGI app without coupling them to each other.
api/main.py knows nothing about web/; web/routes.py knows nothing about api/.

Run with:  uvicorn asgi:app --reload
"""

from typing import Optional

from fastapi import FastAPI

from api.main import create_app
from core.config import Settings, get_settings
from web.routes import router as web_router


def build_app(settings: Optional[Settings] = None) -> FastAPI:
    """Return the API app with the web UI router mounted."""
    application = create_app(settings or get_settings())
    # Mount the web UI router here, not in api/main.py.
    application.include_router(web_router, tags=["Web UI"])
    return application


app = build_app()
