"""Models addressing Cloud Healthcare DICOM stores and their parents."""

from __future__ import annotations

from typing import Any

from pydantic import ConfigDict, Field, model_validator

from .base import BaseModel, CloudResource

RESOURCE_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._:-]*$"

# DICOM tag (0020,000D) Study Instance UID as it appears in DICOM JSON
STUDY_INSTANCE_UID_TAG = "0020000D"


class StoreDescriptor(BaseModel):
    """Immutable address of one DICOM store.

    Constructed once at start-up and shared read-only by the export and
    import pipelines.
    """

    model_config = ConfigDict(frozen=True)

    project_id: str = Field(..., min_length=1, pattern=RESOURCE_ID_PATTERN)
    location_id: str = Field(..., min_length=1, pattern=RESOURCE_ID_PATTERN)
    dataset_name: str = Field(..., min_length=1, pattern=RESOURCE_ID_PATTERN)
    store_name: str = Field(..., min_length=1, pattern=RESOURCE_ID_PATTERN)

    @property
    def location_path(self) -> str:
        return f"projects/{self.project_id}/locations/{self.location_id}"

    @property
    def dataset_path(self) -> str:
        return f"{self.location_path}/datasets/{self.dataset_name}"

    @property
    def store_path(self) -> str:
        return f"{self.dataset_path}/dicomStores/{self.store_name}"

    def __str__(self) -> str:
        return self.store_path


class CloudProject(BaseModel):
    """Google Cloud project as returned by Cloud Resource Manager."""

    project_id: str = Field(..., alias="projectId")
    name: str | None = None
    lifecycle_state: str | None = Field(None, alias="lifecycleState")


class Location(CloudResource):
    """Cloud Healthcare location."""

    location_id: str = Field(..., alias="locationId")


class Dataset(CloudResource):
    """Cloud Healthcare dataset."""

    time_zone: str | None = Field(None, alias="timeZone")


class DicomStore(CloudResource):
    """Cloud Healthcare DICOM store."""

    labels: dict[str, str] | None = None


class StudyRecord(BaseModel):
    """One entry of a QIDO-RS study search response."""

    study_instance_uid: str = Field(..., min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _from_dicom_json(cls, data: Any) -> Any:
        if isinstance(data, dict) and STUDY_INSTANCE_UID_TAG in data:
            element = data.get(STUDY_INSTANCE_UID_TAG) or {}
            values = element.get("Value") or []
            return {"study_instance_uid": values[0] if values else ""}
        return data
