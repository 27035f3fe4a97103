from fastapi import APIRouter, HTTPException, status

from campusfix.api.deps import DbSession, CurrentActor, Sink
from campusfix.schemas.worker import WorkerAvailabilityUpdate, WorkerAvailabilityResponse
from campusfix.services.transitions import ActorRole
from campusfix.services.worker_availability import set_worker_availability

router = APIRouter()


@router.put("/{worker_id}/availability", response_model=WorkerAvailabilityResponse)
async def update_availability(
    worker_id: str,
    update: WorkerAvailabilityUpdate,
    db: DbSession,
    actor: CurrentActor,
    sink: Sink,
):
    """Workers toggle their own availability; supervisors may toggle anyone's."""
    if actor.role != ActorRole.APPROVER and not (actor.role == ActorRole.WORKER and actor.id == worker_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to change this worker's availability",
        )
    assigned = await set_worker_availability(db, worker_id, update.is_available, sink)
    return WorkerAvailabilityResponse(
        worker_id=worker_id,
        is_available=update.is_available,
        tickets_assigned=assigned,
    )
