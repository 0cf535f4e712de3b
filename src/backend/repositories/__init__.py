"""
Repository layer for database operations.

This package contains all data access logic of the diagnostic CMS.
Each repository handles the operations of one entity; rows are returned
as plain dictionaries.
"""

from repositories.base_repository import BaseRepository, DeletionCheck
from repositories.device_repository import DeviceRepository
from repositories.diagnostic_session_repository import DiagnosticSessionRepository, SessionStepRepository
from repositories.diagnostic_step_repository import DiagnosticStepRepository
from repositories.problem_repository import ProblemRepository
from repositories.remote_repository import RemoteRepository
from repositories.tv_interface_mark_repository import (
    TVInterfaceMarkRepository,
    TVInterfaceMarkSimplifiedRepository,
)
from repositories.tv_interface_repository import TVInterfaceRepository

__all__ = [
    "BaseRepository",
    "DeletionCheck",
    "DeviceRepository",
    "DiagnosticSessionRepository",
    "DiagnosticStepRepository",
    "ProblemRepository",
    "RemoteRepository",
    "SessionStepRepository",
    "TVInterfaceMarkRepository",
    "TVInterfaceMarkSimplifiedRepository",
    "TVInterfaceRepository",
]
