from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from models.api_models import GenerationOptions
from models.edl_models import (
    EDL,
    Asset,
    Clip,
    EDLMetadata,
    Easing,
    Effect,
    KenBurnsHint,
    KenBurnsParams,
    OutputSettings,
    RenderSettings,
    Scene,
    Script,
    Timeline,
    Track,
    TrackType,
    Transition,
    Transitions,
    audio_asset_id,
    visual_asset_id,
)


logger = logging.getLogger(__name__)

DISSOLVE_DURATION = 0.5
TIMING_TOLERANCE = 1e-3


class EDLValidationError(Exception):
    pass


def _output_settings(options: GenerationOptions) -> OutputSettings:
    overrides = {
        key: value
        for key, value in {
            "width": options.width,
            "height": options.height,
            "fps": options.fps,
            "format": options.format,
            "codec": options.codec,
            "bitrate": options.bitrate,
        }.items()
        if value is not None
    }
    return OutputSettings(**overrides)


def _render_settings(options: GenerationOptions) -> RenderSettings:
    return RenderSettings(
        use_gpu=options.use_gpu is not False,
        preset=options.preset or "medium",
        crf=options.crf if options.crf is not None else 23,
    )


def _ken_burns_effect(scene: Scene) -> Effect:
    hint = (scene.effects.ken_burns if scene.effects else None) or KenBurnsHint()
    try:
        easing = Easing(hint.easing) if hint.easing else Easing.EASE_IN_OUT
    except ValueError:
        easing = Easing.EASE_IN_OUT

    params = KenBurnsParams(
        start_zoom=hint.start_zoom if hint.start_zoom is not None else 1.0,
        end_zoom=hint.end_zoom if hint.end_zoom is not None else 1.15,
        start_x=hint.start_x or 0.0,
        start_y=hint.start_y or 0.0,
        end_x=hint.end_x or 0.0,
        end_y=hint.end_y or 0.0,
        easing=easing,
    )
    return Effect(type="ken-burns", params=params.to_document())


def find_dropped_scenes(script: Script, assets: dict[str, Asset]) -> list[str]:
    return [
        scene.id
        for scene in script.scenes
        if visual_asset_id(scene.id) not in assets or audio_asset_id(scene.id) not in assets
    ]


def build_edl(
    script: Script,
    assets: dict[str, Asset],
    options: GenerationOptions | None = None,
    created_at: datetime | None = None,
    job_id: str | None = None,
) -> EDL:
    """Lay the script out on a two-track timeline.

    Scenes missing either asset are dropped without advancing the clock.
    Narration length, when known, sets the clip length. Every clip after the
    first surviving one dissolves in.
    """
    options = options or GenerationOptions()
    prefix = f"[{job_id}] " if job_id else ""

    video_track = Track(id="video-main", type=TrackType.VIDEO, name="Main Video")
    audio_track = Track(id="audio-narration", type=TrackType.AUDIO, name="Narration")

    current_time = 0.0
    for scene in script.scenes:
        visual_id = visual_asset_id(scene.id)
        audio_id = audio_asset_id(scene.id)
        visual = assets.get(visual_id)
        audio = assets.get(audio_id)

        if visual is None or audio is None:
            missing = [name for name, asset in ((visual_id, visual), (audio_id, audio)) if asset is None]
            logger.warning(f"{prefix}Dropping scene {scene.id}: missing {', '.join(missing)}")
            continue

        clip_duration = audio.duration or scene.duration

        effects: list[Effect] = []
        if visual.is_image:
            effects.append(_ken_burns_effect(scene))

        transitions = None
        if video_track.clips:
            transitions = Transitions(in_=Transition(type="dissolve", duration=DISSOLVE_DURATION))

        video_track.clips.append(
            Clip(
                id=f"clip_{scene.id}",
                asset_id=visual_id,
                start_time=current_time,
                duration=clip_duration,
                effects=effects,
                transitions=transitions,
            )
        )
        audio_track.clips.append(
            Clip(
                id=f"audio_clip_{scene.id}",
                asset_id=audio_id,
                start_time=current_time,
                duration=clip_duration,
            )
        )
        current_time += clip_duration

    created = created_at or datetime.now(timezone.utc)
    return EDL(
        metadata=EDLMetadata(
            title=script.title,
            description=script.description,
            created_at=created.isoformat().replace("+00:00", "Z"),
            output_settings=_output_settings(options),
        ),
        assets=dict(assets),
        timeline=Timeline(duration=current_time, tracks=[video_track, audio_track]),
        render_settings=_render_settings(options),
    )


def validate_edl(document: Any) -> EDL:
    """Parse a hand-supplied EDL and reject what the renderer cannot honor.

    Video clips are concatenated in list order, so they must run back to back
    from zero. Audio clips are placed by start time and may leave gaps.
    """
    if not isinstance(document, dict) or not document.get("timeline"):
        raise EDLValidationError("Valid EDL is required")

    try:
        edl = EDL.model_validate(document)
    except ValidationError as exc:
        raise EDLValidationError(f"Malformed EDL: {exc}") from exc

    for track_type in (TrackType.VIDEO, TrackType.AUDIO):
        count = sum(1 for track in edl.timeline.tracks if track.type == track_type)
        if count > 1:
            raise EDLValidationError(f"EDL has more than one {track_type.value} track")

    video_track = edl.video_track
    if video_track is None:
        raise EDLValidationError("EDL has no video track")

    for track in edl.timeline.tracks:
        for clip in track.clips:
            if clip.asset_id not in edl.assets:
                raise EDLValidationError(
                    f"Clip {clip.id} references unknown asset {clip.asset_id}"
                )

    video_end = 0.0
    for clip in video_track.clips:
        if abs(clip.start_time - video_end) > TIMING_TOLERANCE:
            raise EDLValidationError(
                f"Clip {clip.id} starts at {clip.start_time}s but the previous clip ends at "
                f"{video_end}s; video clips must be contiguous"
            )
        video_end = clip.end_time

    if abs(edl.timeline.duration - video_end) > TIMING_TOLERANCE:
        logger.warning(
            f"EDL timeline duration {edl.timeline.duration}s does not match video track end {video_end}s"
        )

    return edl
