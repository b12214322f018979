"""
API v1 package.

Contains versioned API routes for the portal authentication API.
"""

from portal_auth.api.v1.routes import router

__all__ = ["router"]
