"""FastAPI routers for the frame server."""

from .api import router as api_router
from .collections import router as collection_router
from .images import router as image_router
from .pages import router as page_router

__all__ = ['api_router', 'collection_router', 'image_router', 'page_router']
