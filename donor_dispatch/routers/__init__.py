from donor_dispatch.routers.blood_requests import router as blood_requests_router
from donor_dispatch.routers.notifications import router as notifications_router

__all__ = ["blood_requests_router", "notifications_router"]
