# API Routers
from reservation_sync.routers import integrations

__all__ = ['integrations']
