"""HTTP interface of the anchoring service."""

from .routes import create_app

__all__ = ["create_app"]
