"""
ASGI entrypoint: expose `app` for process managers / deployments.

- En production, un process manager (ex: uvicorn workers) importe `backend.asgi:app`.
- La configuration FastAPI est centralisée dans backend.app_setup (factory), ce fichier
  ne fait qu’exposer l’instance `app`.
"""

from backend.app import app

__all__ = ["app"]
