"""
API Routers
Separate router modules for each domain.
"""

from app.routers import pipelines

__all__ = ["pipelines"]
