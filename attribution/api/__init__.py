"""
API router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import links, offers, postbacks, tracking, users

api_router = APIRouter()

api_router.include_router(
    postbacks.router,
    prefix="/postback",
    tags=["postbacks"]
)

api_router.include_router(
    tracking.router,
    prefix="/tracking",
    tags=["tracking"]
)

api_router.include_router(
    offers.router,
    prefix="/offers",
    tags=["offers"]
)

api_router.include_router(
    links.router,
    prefix="/affiliate-links",
    tags=["affiliate-links"]
)

api_router.include_router(
    links.stats_router,
    prefix="/affiliate",
    tags=["affiliate-links"]
)

api_router.include_router(
    users.router,
    prefix="/users",
    tags=["users"]
)

# Public redirect routes live at the site root, not under /api.
redirect_router = tracking.redirect_router

__all__ = ["api_router", "redirect_router"]
