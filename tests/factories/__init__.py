"""
Test factories for generating realistic test data.

Uses factory_boy for declarative test data generation.
"""

from .worker import WorkerFactory, CleanerFactory, UnavailableWorkerFactory, WorkerSnapshotFactory
from .location import LocationFactory, LocationSnapshotFactory
from .ticket import TicketCreateFactory

__all__ = [
    "WorkerFactory",
    "CleanerFactory",
    "UnavailableWorkerFactory",
    "WorkerSnapshotFactory",
    "LocationFactory",
    "LocationSnapshotFactory",
    "TicketCreateFactory",
]
