from pydantic import BaseModel


class WorkerAvailabilityUpdate(BaseModel):
    is_available: bool


class WorkerAvailabilityResponse(BaseModel):
    worker_id: str
    is_available: bool
    # Waiting tickets assigned as a result of the worker becoming available
    tickets_assigned: int = 0
