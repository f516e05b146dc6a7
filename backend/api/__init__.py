# api/__init__.py
from api.server import app, build_engine, create_app

__all__ = [
    "app",
    "build_engine",
    "create_app",
]
