"""ASGI entry point: ``uvicorn agentflow.main:app``."""

from .config import load_config
from .factory import create_app

app = create_app(load_config())
