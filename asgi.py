"""
asgi.py -- Process entry point for the AuthGate HTTP server.

This is the only place the API reads configuration from the environment:
get_settings() is called once here and the result is injected into
create_app(). Everything below receives Settings explicitly.

Run with:  uvicorn asgi:app --proxy-headers
"""

from api.main import create_app
from core.config import get_settings

app = create_app(get_settings())
