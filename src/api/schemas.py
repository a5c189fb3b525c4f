"""Pydantic request/response models for the storyreel API."""

from pydantic import BaseModel, ConfigDict, Field

from story_video.mixed_media import (
    DEFAULT_BACKGROUND_VOLUME,
    DEFAULT_FRAME_RATE,
    MAX_BACKGROUND_VOLUME,
    MAX_FRAME_RATE,
)

# =============================================================================
# Response Models
# =============================================================================


class RootResponse(BaseModel):
    """Root endpoint response."""

    message: str
    version: str

    model_config = {"json_schema_extra": {"examples": [{"message": "storyreel API", "version": "1.0.0"}]}}


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    active_runs: int = 0

    model_config = {"json_schema_extra": {"examples": [{"status": "healthy", "active_runs": 0}]}}


class UploadResponse(BaseModel):
    """Upload acknowledgement."""

    success: bool
    session_id: str
    files: dict[str, list[str]] = Field(default_factory=dict)


class RunAcceptedResponse(BaseModel):
    """Response when a generation run is accepted."""

    run_id: str
    session_id: str
    status: str

    model_config = {
        "json_schema_extra": {
            "examples": [{"run_id": "3f2a9c1b7d4e", "session_id": "abc123", "status": "queued"}]
        }
    }


class RunResponse(BaseModel):
    """Persisted state of one run."""

    run_id: str
    session_id: str
    kind: str
    status: str
    stage: str
    percent: float = Field(ge=0, le=100)
    message: str | None = None
    url: str | None = None
    filename: str | None = None
    error: str | None = None
    created_at: str
    updated_at: str


class RunListResponse(BaseModel):
    """List of runs response."""

    runs: list[RunResponse]


# =============================================================================
# Request Models
# =============================================================================


class StoryGenerateRequest(BaseModel):
    """Start a story run for an uploaded session."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")


class MixedGenerateRequest(BaseModel):
    """Start a mixed-media run for an uploaded session."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    background_volume: float = Field(
        default=DEFAULT_BACKGROUND_VOLUME, alias="backgroundVolume", ge=0, le=MAX_BACKGROUND_VOLUME
    )
    frame_rate: int = Field(default=DEFAULT_FRAME_RATE, alias="frameRate", ge=1, le=MAX_FRAME_RATE)
