"""
asgi.py -- Application assembly for the account service.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
