"""
Request/response schemas for the controller HTTP API.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from models.edl_models import CamelModel, Script


class JobStatus(str, Enum):
    PROCESSING = "processing"  # EDL built, render dispatched
    RENDERING = "rendering"  # EDL persisted, no output yet
    COMPLETED = "completed"  # final artifact exists


class VoiceConfig(CamelModel):
    """Narration voice passed through to speech synthesis."""

    language_code: str = Field(default="en-US")
    name: str | None = Field(default=None, description="Provider voice name")
    ssml_gender: str = Field(default="MALE")
    speaking_rate: float = Field(default=1.0, gt=0, le=4.0)
    pitch: float = Field(default=0.0, ge=-20.0, le=20.0)


class GenerationOptions(CamelModel):
    """Output overrides; unset fields fall back to the EDL defaults."""

    width: int | None = Field(default=None, gt=0)
    height: int | None = Field(default=None, gt=0)
    fps: float | None = Field(default=None, gt=0)
    format: str | None = None
    codec: str | None = None
    bitrate: str | None = None
    use_gpu: bool | None = None
    preset: str | None = None
    crf: int | None = Field(default=None, ge=0, le=51)
    voice: VoiceConfig | None = None


class GenerateRequest(CamelModel):
    topic: str | None = Field(default=None, description="What the video is about")
    target_duration: int | None = Field(default=None, gt=0, description="Seconds")
    job_id: str | None = None
    options: GenerationOptions = Field(default_factory=GenerationOptions)


class RenderExecution(CamelModel):
    execution_name: str
    job_name: str
    status: str


class GenerationResult(CamelModel):
    job_id: str
    status: JobStatus = JobStatus.PROCESSING
    edl_path: str
    script: Script
    asset_count: int
    estimated_duration: float
    dropped_scenes: list[str] = Field(default_factory=list)
    render_execution: RenderExecution | None = None
    degraded: bool = False


class RenderRequest(BaseModel):
    edl: dict[str, Any] | None = Field(default=None, description="Complete EDL document")


class RenderResponse(CamelModel):
    job_id: str
    status: JobStatus = JobStatus.RENDERING
    edl_path: str
    render_execution: RenderExecution | None = None
    degraded: bool = False


class JobStatusResponse(CamelModel):
    job_id: str
    status: JobStatus
    output_path: str | None = None
    completed_at: str | None = None
    edl_path: str | None = None


class HealthResponse(BaseModel):
    status: str = "healthy"
    service: str = "hybrid-video-orchestrator"
