"""
API Version 1 Router.

Combines all API endpoints under /api/v1 prefix.
"""

from fastapi import APIRouter, Depends

from agora.api.v1.endpoints import (
    auth,
    categories,
    notifications,
    posts,
    topics,
    users,
)
from agora.core.ratelimit import api_limiter, auth_limiter

router = APIRouter()

# Include endpoint routers
router.include_router(
    auth.router,
    prefix="/auth",
    tags=["Auth"],
    dependencies=[Depends(auth_limiter)],
)
router.include_router(
    categories.router,
    prefix="/categories",
    tags=["Categories"],
    dependencies=[Depends(api_limiter)],
)
router.include_router(
    topics.router,
    prefix="/topics",
    tags=["Topics"],
    dependencies=[Depends(api_limiter)],
)
router.include_router(
    posts.router,
    prefix="/posts",
    tags=["Posts"],
    dependencies=[Depends(api_limiter)],
)
router.include_router(
    users.router,
    prefix="/users",
    tags=["Users"],
    dependencies=[Depends(api_limiter)],
)
router.include_router(
    notifications.router,
    prefix="/notifications",
    tags=["Notifications"],
    dependencies=[Depends(api_limiter)],
)
