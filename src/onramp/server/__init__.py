"""HTTP surface -- FastAPI app factory and routers."""

from onramp.server.app import create_app

__all__ = ["create_app"]
