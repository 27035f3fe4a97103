from campusfix.repositories.worker_directory import (
    WorkerDirectory,
    WorkerSnapshot,
    LocationStore,
    LocationSnapshot,
)
from campusfix.repositories.ticket_store import TicketStore, TaskStore

__all__ = [
    "WorkerDirectory",
    "WorkerSnapshot",
    "LocationStore",
    "LocationSnapshot",
    "TicketStore",
    "TaskStore",
]
