"""Deployment entrypoint.

Many platforms start Python web apps with `uvicorn main:app`; the FastAPI
application itself lives in `server.py`.
"""

from server import app  # noqa: F401
