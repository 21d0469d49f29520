from fastapi import APIRouter

from daycare.interfaces.api.v1.routes.payments import router as payments_router
from daycare.interfaces.api.v1.routes.ping import router as ping_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(ping_router)
api_router.include_router(payments_router)
