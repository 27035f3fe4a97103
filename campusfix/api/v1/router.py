from fastapi import APIRouter
from campusfix.api.v1 import (
    tickets,
    recurring_tasks,
    workers,
)

api_router = APIRouter()

# Include all v1 routers
api_router.include_router(tickets.router, prefix="/tickets", tags=["tickets"])
api_router.include_router(recurring_tasks.router, prefix="/recurring-tasks", tags=["recurring-tasks"])
api_router.include_router(workers.router, prefix="/workers", tags=["workers"])
