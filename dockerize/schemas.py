from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class ArchiveFormat(str, Enum):
    zip = "zip"
    deflate = "deflate"


class Scheme(BaseModel):
    name: str
    image: str
    arguments: str

    model_config = {"from_attributes": True}


class RunRequest(BaseModel):
    scheme: str = Field(default="default", description="Scheme name from the service configuration.")
    target: str = Field(..., description="Value substituted for {host} in the scheme arguments.")

    @field_validator("target")
    @classmethod
    def _single_token(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("target must not be empty")
        if len(stripped.split()) > 1:
            raise ValueError("target must not contain whitespace")
        return stripped


class RunResponse(BaseModel):
    scheme: str
    target: str
    output: str


class PullRequest(BaseModel):
    images: List[str] = Field(..., min_length=1)


class PullResult(BaseModel):
    reference: str
    pulled: bool
    error: Optional[str] = None

    model_config = {"from_attributes": True}


class PullResponse(BaseModel):
    results: List[PullResult]


class ImageExistsResponse(BaseModel):
    reference: str
    exists: bool


class ExtractResponse(BaseModel):
    output: str
