"""
asgi.py -- ASGI entry point.

The only place get_settings() is called. Everything below receives the
Settings object explicitly through create_app().

Run with:  uvicorn asgi:app --reload
"""

from api.main import create_app
from core.config import get_settings

app = create_app(get_settings())
