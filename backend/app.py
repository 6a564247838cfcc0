# module backend.app
"""
Instance FastAPI unique de l’application, construite par la factory.
Toute la configuration (middlewares, handlers, routers, lifespan) vit dans backend.app_setup.
"""
from backend.app_setup.factory import create_app

app = create_app()
