"""Base model with common configuration for Cloud Healthcare resources."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel as PydanticBaseModel
from pydantic import ConfigDict, Field


class BaseModel(PydanticBaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary."""
        return self.model_dump(exclude_none=True)

    def to_row(self, columns: list[str]) -> dict[str, Any]:
        """Convert model to row dict for table output."""
        data = self.to_dict()
        return {col: data.get(col, "") for col in columns}


class CloudResource(BaseModel):
    """Base model for resources addressed by a full API resource name."""

    name: str = Field(..., description="Full resource name, e.g. projects/p/locations/l")

    @property
    def short_name(self) -> str:
        """Return the trailing segment of the resource name."""
        return self.name.rsplit("/", 1)[-1]
