"""
API路由模块
"""
from .connections import router as connections_router
from .redactions import router as redactions_router
from .metadata import router as metadata_router
from .chat import router as chat_router
from .query import router as query_router
from .audit import router as audit_router
from .cache import router as cache_router

__all__ = [
    "connections_router",
    "redactions_router",
    "metadata_router",
    "chat_router",
    "query_router",
    "audit_router",
    "cache_router",
]
