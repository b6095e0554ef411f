from __future__ import annotations

from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends

from ..backend import Backend
from ..dashboard import dashboard_stats
from ..dependencies import get_backend, get_clock, require_action
from ..permissions import Action
from ..schemas import DashboardStatsOut
from ..session import SessionContext

router = APIRouter(
    prefix="/api/v1/dashboard",
    tags=["dashboard"],
)


# PUBLIC_INTERFACE
@router.get(
    "/stats",
    response_model=DashboardStatsOut,
    summary="Dashboard Statistics",
    description=(
        "Total, completed and upcoming todo counts for the caller. "
        "total_users is included only for roles allowed to view the user count."
    ),
    responses={
        200: {"description": "Statistics"},
        502: {"description": "Failed to load dashboard"},
    },
)
async def get_stats(
    ctx: SessionContext = Depends(require_action(Action.VIEW_DASHBOARD)),
    backend: Backend = Depends(get_backend),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> DashboardStatsOut:
    stats = await dashboard_stats(backend.rows, ctx, now=clock())
    return DashboardStatsOut(
        total_todos=stats.total_todos,
        completed_todos=stats.completed_todos,
        upcoming_todos=stats.upcoming_todos,
        total_users=stats.total_users,
    )
