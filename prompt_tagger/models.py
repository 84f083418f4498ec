"""
Data models for the Prompt Tagger service.
"""

from typing import Any, Dict, List, Optional, Union
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field


class ImageSize(BaseModel):
    """Image dimensions recovered from generation metadata."""
    model_config = ConfigDict(frozen=True)

    width: int
    height: int


class CanonicalMetadata(BaseModel):
    """Generation metadata extracted from an image's embedded text."""
    model_config = ConfigDict(frozen=True)

    positive: str
    negative: Optional[str] = None
    steps: Optional[Union[int, float]] = None
    sampler: Optional[str] = None
    cfg: Optional[Union[int, float]] = None
    seed: Optional[Union[int, str]] = None
    size: Optional[ImageSize] = None
    model: Optional[str] = None
    raw: Dict[str, str] = Field(default_factory=dict)

    def source_text(self) -> str:
        """All decoded text joined together, as it was found in the image."""
        return "\n".join(value for value in self.raw.values() if value)


class Photo(BaseModel):
    """PhotoPrism search result item."""
    model_config = ConfigDict(extra="ignore")

    UID: str
    Type: Optional[str] = None
    Title: Optional[str] = None
    Caption: Optional[str] = None
    Path: str = ""
    Name: Optional[str] = None
    OriginalName: Optional[str] = None
    FileName: Optional[str] = None

    @property
    def file_name(self) -> str:
        """Base name of the primary file (without folder)."""
        if self.FileName:
            return self.FileName.rsplit("/", 1)[-1]
        if self.OriginalName:
            return self.OriginalName.rsplit("/", 1)[-1]
        return (self.Name or "").rsplit("/", 1)[-1]

    @property
    def folder(self) -> str:
        """Folder of the primary file, relative to the originals root."""
        if self.Path:
            return self.Path.strip("/")
        if self.FileName and "/" in self.FileName:
            return self.FileName.rsplit("/", 1)[0].strip("/")
        return ""

    @property
    def relative_path(self) -> str:
        """Folder and file name joined with '/'."""
        return f"{self.folder}/{self.file_name}" if self.folder else self.file_name


class PhotoLabel(BaseModel):
    """Label attached to a photo (PhotoPrism returns both nested and flat shapes)."""
    model_config = ConfigDict(extra="ignore")

    Name: Optional[str] = None
    Label: Optional[Dict[str, Any]] = None

    @property
    def label_name(self) -> str:
        if self.Name:
            return self.Name
        if self.Label and self.Label.get("Name"):
            return str(self.Label["Name"])
        return ""


class PhotoDetails(BaseModel):
    """Subset of the photo detail response we rely on."""
    model_config = ConfigDict(extra="ignore")

    UID: Optional[str] = None
    Labels: List[PhotoLabel] = []
    PhotoLabels: List[PhotoLabel] = []


class AddLabelRequest(BaseModel):
    """Request for attaching a label to a photo."""
    Name: str
    Priority: int = 0
    Uncertainty: int = Field(default=0, ge=0, le=100)


class UpdatePhotoRequest(BaseModel):
    """Request for updating a photo's caption and description."""
    Description: str
    DescriptionSrc: str = "manual"
    Caption: str
    CaptionSrc: str = "manual"


class PhotoProcessingResult(BaseModel):
    """Result of processing one candidate."""
    item_id: str
    uid: Optional[str] = None
    success: bool
    skipped: bool = False
    reason: Optional[str] = None
    labels_assigned: List[str] = []
    processing_time: float = 0.0
    error: Optional[str] = None


class HealthStatus(BaseModel):
    """Health check response."""
    status: str = "healthy"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str = "1.0.0"
    metrics: Dict[str, Any] = {}
