from tracker_api.routers.admin_api import router as admin_router
from tracker_api.routers.services_api import router as services_router

__all__ = ["admin_router", "services_router"]
