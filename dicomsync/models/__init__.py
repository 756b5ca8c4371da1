"""Data models for dicomsync."""

from dicomsync.models.base import BaseModel, CloudResource
from dicomsync.models.store import (
    CloudProject,
    Dataset,
    DicomStore,
    Location,
    StoreDescriptor,
    StudyRecord,
)
from dicomsync.models.transfer import (
    Direction,
    OutcomeCounts,
    PollerState,
    RemoteObjectRef,
    TaskState,
    TransferOutcome,
    TransferResult,
    TransferTask,
)

__all__ = [
    # Base
    "BaseModel",
    "CloudResource",
    # Store addressing
    "StoreDescriptor",
    "CloudProject",
    "Location",
    "Dataset",
    "DicomStore",
    "StudyRecord",
    # Transfers
    "Direction",
    "TransferResult",
    "TaskState",
    "PollerState",
    "TransferTask",
    "RemoteObjectRef",
    "TransferOutcome",
    "OutcomeCounts",
]
