# portal/asgi.py

"""
ASGI entrypoint.

    uvicorn portal.asgi:app
"""

from portal.main import create_app

app = create_app()
