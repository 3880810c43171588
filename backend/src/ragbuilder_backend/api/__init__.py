"""HTTP surface for the pipeline builder."""

from .server import create_app

__all__ = ["create_app"]
