"""
Database models for the diagnostic CMS.

Importing this package registers every table on ``SQLModel.metadata``.
"""
from .models import (
    Device,
    DiagnosticSession,
    DiagnosticStep,
    MARK_BASELINE_COLUMNS,
    MARK_OPTIONAL_COLUMNS,
    Problem,
    Remote,
    SessionStep,
    TableModel,
    TVInterface,
    TVInterfaceMark,
    utc_now,
)

__all__ = [
    "TableModel",
    "Device",
    "Problem",
    "DiagnosticStep",
    "DiagnosticSession",
    "SessionStep",
    "Remote",
    "TVInterface",
    "TVInterfaceMark",
    "MARK_BASELINE_COLUMNS",
    "MARK_OPTIONAL_COLUMNS",
    "utc_now",
]
