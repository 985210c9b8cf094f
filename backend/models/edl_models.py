"""
Pydantic models for scripts, assets and the Edit Decision List (EDL).

The EDL is the only contract between the controller and the render job, so
the models serialize to the camelCase JSON document the renderer reads:
- Script and Scene: output of script generation
- Asset: one generated or fetched media file, keyed "{role}_{sceneId}"
- EDL: metadata, asset map, two-track timeline and render settings
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


EDL_VERSION = "1.0.0"
EDL_AUTHOR = "Hybrid Video Orchestrator"


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# ENUMS
# =============================================================================


class VisualType(str, Enum):
    """How a scene's visual is sourced."""

    IMAGE = "image"  # generated still, animated with Ken Burns
    VIDEO = "video"  # stock footage


class AssetType(str, Enum):
    GENERATED_IMAGE = "generated-image"
    IMAGE = "image"
    PEXELS_VIDEO = "pexels-video"
    VIDEO = "video"
    GENERATED_AUDIO = "generated-audio"


IMAGE_ASSET_TYPES = {AssetType.GENERATED_IMAGE, AssetType.IMAGE}
VIDEO_ASSET_TYPES = {AssetType.PEXELS_VIDEO, AssetType.VIDEO}


class TrackType(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"


class Easing(str, Enum):
    LINEAR = "linear"
    EASE_IN = "ease-in"
    EASE_OUT = "ease-out"
    EASE_IN_OUT = "ease-in-out"


# =============================================================================
# SCRIPT
# =============================================================================


class KenBurnsHint(CamelModel):
    """Pan/zoom hint a script may attach to an image scene."""

    start_zoom: float | None = Field(default=None, description="Zoom at clip start")
    end_zoom: float | None = Field(default=None, description="Zoom at clip end")
    start_x: float | None = None
    start_y: float | None = None
    end_x: float | None = None
    end_y: float | None = None
    easing: str | None = None
    direction: str | None = Field(
        default=None, description="Free-form hint (in/out/left/right); not used for rendering"
    )


class SceneEffects(CamelModel):
    ken_burns: KenBurnsHint | None = None


class Scene(CamelModel):
    """One narrated beat of the video."""

    id: str = Field(..., min_length=1, description="Scene identifier, e.g. scene_1")
    duration: float = Field(..., gt=0, description="Declared scene length in seconds")
    narration: str = Field(default="", description="Text to be spoken")
    visual_type: VisualType | None = Field(default=None, description="image or video")
    visual_description: str | None = Field(
        default=None, description="What should be on screen"
    )
    search_query: str | None = Field(default=None, description="Stock footage query")
    image_prompt: str | None = Field(default=None, description="Image generation prompt")
    effects: SceneEffects | None = None


class Script(CamelModel):
    title: str = Field(..., description="Video title")
    description: str = Field(default="", description="Brief description")
    scenes: list[Scene] = Field(default_factory=list)


# =============================================================================
# ASSETS
# =============================================================================


class Asset(CamelModel):
    """A resolved media file. Created once by the fan-out and never mutated."""

    id: str | None = None
    type: AssetType
    source: str = Field(..., description="gs://, https:// or local path")
    duration: float | None = Field(
        default=None, description="Seconds; set for narration audio"
    )
    prompt: str | None = None
    search_query: str | None = None

    @property
    def is_image(self) -> bool:
        return self.type in IMAGE_ASSET_TYPES


def visual_asset_id(scene_id: str) -> str:
    return f"visual_{scene_id}"


def audio_asset_id(scene_id: str) -> str:
    return f"audio_{scene_id}"


# =============================================================================
# TIMELINE
# =============================================================================


class KenBurnsParams(CamelModel):
    start_zoom: float = 1.0
    end_zoom: float = 1.15
    start_x: float = 0.0
    start_y: float = 0.0
    end_x: float = 0.0
    end_y: float = 0.0
    easing: Easing = Easing.EASE_IN_OUT


class Effect(CamelModel):
    type: str = Field(..., description="Effect type, e.g. ken-burns")
    params: dict[str, Any] = Field(default_factory=dict)


class Transition(CamelModel):
    type: str = Field(default="dissolve", description="fade or dissolve")
    duration: float = Field(default=0.5, gt=0)


class Transitions(CamelModel):
    in_: Transition | None = Field(default=None, alias="in")
    out: Transition | None = Field(default=None, alias="out")


class Clip(CamelModel):
    id: str
    asset_id: str
    start_time: float = Field(..., ge=0)
    duration: float = Field(..., gt=0)
    in_point: float | None = Field(
        default=None, ge=0, description="Source offset for video assets"
    )
    effects: list[Effect] | None = None
    transitions: Transitions | None = None

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


class Track(CamelModel):
    id: str
    type: TrackType
    name: str | None = None
    clips: list[Clip] = Field(default_factory=list)


class Timeline(CamelModel):
    duration: float = Field(default=0.0, ge=0)
    tracks: list[Track] = Field(default_factory=list)

    def track(self, track_type: TrackType) -> Track | None:
        for track in self.tracks:
            if track.type == track_type:
                return track
        return None


# =============================================================================
# SETTINGS
# =============================================================================


class OutputSettings(CamelModel):
    width: int = Field(default=1920, gt=0)
    height: int = Field(default=1080, gt=0)
    fps: float = Field(default=30, gt=0)
    format: str = "mp4"
    codec: str = "h264"
    bitrate: str = "8M"
    audio_codec: str = "aac"
    audio_bitrate: str = "192K"


class RenderSettings(CamelModel):
    use_gpu: bool = True
    preset: str = "medium"
    crf: int = Field(default=23, ge=0, le=51)


class EDLMetadata(CamelModel):
    title: str = ""
    description: str = ""
    author: str = EDL_AUTHOR
    created_at: str | None = None
    output_settings: OutputSettings = Field(default_factory=OutputSettings)


class EDL(CamelModel):
    """Edit Decision List: the render job's single source of truth."""

    version: str = EDL_VERSION
    metadata: EDLMetadata = Field(default_factory=EDLMetadata)
    assets: dict[str, Asset] = Field(default_factory=dict)
    timeline: Timeline
    render_settings: RenderSettings = Field(default_factory=RenderSettings)

    @property
    def video_track(self) -> Track | None:
        return self.timeline.track(TrackType.VIDEO)

    @property
    def audio_track(self) -> Track | None:
        return self.timeline.track(TrackType.AUDIO)
