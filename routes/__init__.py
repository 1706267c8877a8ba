# Routes package for the Resell Queue API
from .queue import router as queue_router
from .market import router as market_router

__all__ = [
    'queue_router',
    'market_router',
]
