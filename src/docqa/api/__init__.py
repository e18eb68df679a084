"""HTTP routers."""
from .routes import router

__all__ = ["router"]
