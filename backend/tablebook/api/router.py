"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from tablebook.api.routes import branches, bookings, payments, offers

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(branches.router)
api_router.include_router(bookings.router)
api_router.include_router(payments.router)
api_router.include_router(offers.router)
