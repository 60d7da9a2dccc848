from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from solve_server.models.repodata.document import RepoDataRecord


class SolveRequest(BaseModel):
    """Request body for POST /solve."""

    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    specs: list[str]
    virtual_packages: list[str] = Field(default_factory=list)
    channels: list[str]
    platform: str


class SolveResponse(BaseModel):
    """Successful solve: packages in installation order."""

    packages: list[RepoDataRecord]
