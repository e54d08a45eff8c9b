"""Pydantic models for the BSN.cloud API."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


# =============================================================================
# Authentication
# =============================================================================


class TokenResponse(BaseModel):
    """Response from the OAuth2 token endpoint."""

    access_token: str = Field(default="", description="Bearer token")
    token_type: str = Field(default="Bearer")
    expires_in: int = Field(default=0, description="Token lifetime in seconds")
    scope: str = Field(default="")


# =============================================================================
# Networks
# =============================================================================


class Network(BaseModel):
    """A BSN.cloud network (the scope most resource calls run under)."""

    id: int = Field(..., description="Numeric network identifier")
    name: str = Field(default="", description="Human-readable network name")
    creation_date: datetime | None = Field(default=None, alias="creationDate")
    last_modified_date: datetime | None = Field(default=None, alias="lastModifiedDate")
    is_locked_out: bool = Field(default=False, alias="isLockedOut")

    model_config = {"populate_by_name": True, "frozen": True}

    def __str__(self) -> str:
        return f"{self.name} (ID: {self.id})"


# =============================================================================
# Paged resources
# =============================================================================


class PageEnvelope(BaseModel):
    """Wire shape shared by every paged list endpoint."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    total_count: int | None = Field(default=None, alias="totalCount")
    is_truncated: bool = Field(default=False, alias="isTruncated")
    next_marker: str | None = Field(default=None, alias="nextMarker")

    model_config = {"populate_by_name": True}


class ListQuery(BaseModel):
    """Filter, sort and paging parameters for one listing.

    The marker is threaded forward by the pager; filter and sort must stay the
    same for the marker to remain meaningful.
    """

    filter: str = ""
    sort: str = ""
    page_size: int | None = Field(default=None, gt=0)
    marker: str | None = None

    model_config = {"frozen": True}

    def to_params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        if self.filter:
            params["filter"] = self.filter
        if self.sort:
            params["sort"] = self.sort
        if self.page_size:
            params["pageSize"] = str(self.page_size)
        if self.marker:
            params["marker"] = self.marker
        return params

    def with_marker(self, marker: str | None) -> ListQuery:
        return self.model_copy(update={"marker": marker})

    def same_listing(self, other: ListQuery) -> bool:
        """Check whether two queries select the same ordered result set."""
        return self.filter == other.filter and self.sort == other.sort


class Page(BaseModel, Generic[T]):
    """One page of a listing."""

    items: list[T] = Field(default_factory=list)
    total_count: int | None = None
    truncated: bool = False
    marker: str | None = None
    query: ListQuery = Field(default_factory=ListQuery)
    network_id: int | None = None

    model_config = {"arbitrary_types_allowed": True}


class Device(BaseModel):
    """A registered player."""

    id: int
    serial: str = ""
    model: str = ""
    family: str = ""
    registration_date: datetime | None = Field(default=None, alias="registrationDate")
    last_modified_date: datetime | None = Field(default=None, alias="lastModifiedDate")

    model_config = {"populate_by_name": True, "extra": "allow"}


class ContentFile(BaseModel):
    """A file in the network's content library."""

    id: int
    name: str = ""
    type: str = ""
    media_type: str = Field(default="", alias="mediaType")
    file_size: int = Field(default=0, alias="fileSize")
    hash: str = ""
    virtual_path: str = Field(default="", alias="virtualPath")
    creation_date: datetime | None = Field(default=None, alias="creationDate")
    last_modified_date: datetime | None = Field(default=None, alias="lastModifiedDate")

    model_config = {"populate_by_name": True, "extra": "allow"}


class Subscription(BaseModel):
    """A device subscription."""

    id: int
    device_serial: str = Field(default="", alias="deviceSerial")
    device_id: int | None = Field(default=None, alias="deviceId")
    type: str = ""
    status: str = ""
    start_date: datetime | None = Field(default=None, alias="startDate")
    end_date: datetime | None = Field(default=None, alias="endDate")
    auto_renew: bool = Field(default=False, alias="autoRenew")

    model_config = {"populate_by_name": True, "extra": "allow"}


class DeviceError(BaseModel):
    """An error reported by a device."""

    id: int | None = None
    serial: str = ""
    error_code: str = Field(default="", alias="errorCode")
    error_type: str = Field(default="", alias="errorType")
    severity: str = ""
    message: str = ""
    timestamp: datetime | None = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class SetupRecord(BaseModel):
    """A provisioning (B-Deploy) setup record."""

    id: str = Field(default="", alias="_id")
    version: str = ""
    setup_type: str = Field(default="", alias="setupType")
    bsn_group_name: str = Field(default="", alias="bsnGroupName")
    time_zone: str = Field(default="", alias="timeZone")

    model_config = {"populate_by_name": True, "extra": "allow"}


# =============================================================================
# Uploads
# =============================================================================


class UploadStatus(str, Enum):
    """Server-side state of an upload session."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: str) -> UploadStatus | None:
        """Map a wire status (including legacy state names) onto a status.

        Returns None for unknown values.
        """
        return _STATUS_ALIASES.get(value.strip().lower())


_STATUS_ALIASES = {
    "pending": UploadStatus.PENDING,
    "queued": UploadStatus.PENDING,
    "started": UploadStatus.PENDING,
    "processing": UploadStatus.PROCESSING,
    "uploading": UploadStatus.PROCESSING,
    "complete": UploadStatus.COMPLETE,
    "completed": UploadStatus.COMPLETE,
    "uploaded": UploadStatus.COMPLETE,
    "verified": UploadStatus.COMPLETE,
    "failed": UploadStatus.FAILED,
    "corrupted": UploadStatus.FAILED,
    "cancelled": UploadStatus.FAILED,
    "terminated": UploadStatus.FAILED,
}


class OpenSessionRequest(BaseModel):
    """Request body that opens an upload session."""

    name: str
    size: int = Field(..., ge=0)
    path: str
    hash: str


class OpenSessionResponse(BaseModel):
    """Response to opening an upload session."""

    session_id: str = Field(..., alias="sessionId", min_length=1)

    model_config = {"populate_by_name": True}


class SessionStatusResponse(BaseModel):
    """Response from polling an upload session."""

    status: str = Field(default="")
    message: str = Field(default="")


class UploadResult(BaseModel):
    """Resource descriptor returned when an upload completes."""

    content_id: int | None = Field(default=None, alias="contentId")
    file_name: str = Field(default="", alias="fileName")
    file_size: int = Field(default=0, alias="fileSize")
    virtual_path: str = Field(default="", alias="virtualPath")
    file_hash: str = Field(default="", alias="fileHash")
    upload_complete: bool = Field(default=True, alias="uploadComplete")
    upload_date: datetime | None = Field(default=None, alias="uploadDate")
    session_id: str = Field(default="", alias="sessionId")

    model_config = {"populate_by_name": True, "extra": "allow"}


class UploadSession(BaseModel):
    """Client-side state of one chunked upload.

    Created when the content has been hashed, given a ``session_id`` once the
    server opens the session. Confirmed offsets only ever grow.
    """

    name: str
    path: str
    size: int = Field(..., ge=0)
    hash: str
    chunk_size: int = Field(..., gt=0)
    session_id: str | None = None
    network: Network | None = None
    confirmed_offsets: set[int] = Field(default_factory=set)
    transmitted_hash: str | None = None
    status: UploadStatus | None = None
    completed: bool = False

    @property
    def expected_offsets(self) -> list[int]:
        return list(range(0, self.size, self.chunk_size))

    @property
    def chunk_count(self) -> int:
        return len(self.expected_offsets)

    @property
    def all_chunks_confirmed(self) -> bool:
        return self.confirmed_offsets.issuperset(self.expected_offsets)

    def confirm(self, offset: int) -> None:
        """Record that the chunk starting at ``offset`` was accepted."""
        if offset < 0 or offset >= max(self.size, 1) or offset % self.chunk_size:
            raise ValueError(f"offset {offset} is not a chunk boundary of this upload")
        self.confirmed_offsets.add(offset)
