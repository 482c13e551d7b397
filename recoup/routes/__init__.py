"""
Consolidated routes module.

Usage:
    from recoup.routes import ar_engine_router
"""

from recoup.routes.ar_engine import router as ar_engine_router

__all__ = ["ar_engine_router"]
