"""
Vercel entry point for the Dishola search API.
"""
from dishola.api.main import app

__all__ = ["app"]
