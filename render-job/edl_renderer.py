#!/usr/bin/env python3
import json
import logging
import math
import os
import re
import shutil
import subprocess
import threading
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from google.cloud import storage
from google.oauth2 import service_account

from ken_burns import KenBurnsParams, build_ken_burns_filter, frame_count


logger = logging.getLogger("edl-renderer")


IMAGE_ASSET_TYPES = {"generated-image", "image"}
VIDEO_ASSET_TYPES = {"pexels-video", "video"}
FADE_TRANSITION_TYPES = {"fade", "dissolve"}
DEFAULT_FADE_DURATION = 0.5
SEGMENT_CRF = 18
SEGMENT_PRESET = "fast"
TIMING_TOLERANCE = 1e-3


class RenderError(Exception):
    pass


class EDLValidationError(RenderError):
    pass


class RenderStage(str, Enum):
    DOWNLOADING = "downloading"
    RENDERING_CLIPS = "rendering_clips"
    CONCATENATING = "concatenating"
    MIXING_AUDIO = "mixing_audio"
    COMBINING = "combining"
    DONE = "done"
    FAILED = "failed"


STAGE_PROGRESS: dict[RenderStage, int] = {
    RenderStage.DOWNLOADING: 5,
    RenderStage.RENDERING_CLIPS: 20,
    RenderStage.CONCATENATING: 70,
    RenderStage.MIXING_AUDIO: 80,
    RenderStage.COMBINING: 90,
    RenderStage.DONE: 100,
}


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class RendererConfig:
    job_id: str
    edl_path: str
    bucket_name: str = "hybrid-video-assets"
    work_dir: Path = Path("/tmp/render")
    use_gpu: bool = False
    ffmpeg_bin: str = "ffmpeg"
    ffmpeg_timeout_seconds: int = 7200
    gcp_credentials: str | None = None

    @classmethod
    def from_env(cls) -> "RendererConfig":
        timeout_raw = os.environ.get("FFMPEG_TIMEOUT_SECONDS", "7200")
        try:
            timeout_seconds = max(0, int(timeout_raw))
        except ValueError:
            timeout_seconds = 7200
        return cls(
            job_id=os.environ.get("JOB_ID", ""),
            edl_path=os.environ.get("EDL_PATH", ""),
            bucket_name=os.environ.get("GCS_BUCKET", "hybrid-video-assets"),
            work_dir=Path(os.environ.get("WORK_DIR", "/tmp/render")),
            use_gpu=_env_flag("USE_GPU"),
            ffmpeg_bin=os.environ.get("FFMPEG_BIN", "ffmpeg"),
            ffmpeg_timeout_seconds=timeout_seconds,
            gcp_credentials=os.environ.get("GCP_CREDENTIALS") or None,
        )


@dataclass
class OutputSettings:
    width: int = 1920
    height: int = 1080
    fps: float = 30
    format: str = "mp4"
    codec: str = "h264"
    bitrate: str | None = "8M"
    audio_codec: str = "aac"
    audio_bitrate: str = "192K"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "OutputSettings":
        data = data or {}
        return cls(
            width=int(data.get("width") or 1920),
            height=int(data.get("height") or 1080),
            fps=float(data.get("fps") or 30),
            format=str(data.get("format") or "mp4"),
            codec=str(data.get("codec") or "h264").lower(),
            bitrate=data.get("bitrate") or None,
            audio_codec=str(data.get("audioCodec") or "aac").lower(),
            audio_bitrate=str(data.get("audioBitrate") or "192K"),
        )


@dataclass
class EncodeSettings:
    use_gpu: bool = False
    preset: str = "medium"
    crf: int = 23

    @classmethod
    def from_edl(cls, edl: dict[str, Any]) -> "EncodeSettings":
        render_settings = edl.get("renderSettings") or {}
        output_settings = (edl.get("metadata") or {}).get("outputSettings") or {}
        crf = render_settings.get("crf", output_settings.get("crf"))
        return cls(
            use_gpu=bool(render_settings.get("useGpu", False)),
            preset=str(render_settings.get("preset") or output_settings.get("preset") or "medium"),
            crf=int(crf) if crf is not None else 23,
        )


@dataclass
class RenderResult:
    output_path: Path
    rendered_clips: list[str] = field(default_factory=list)
    skipped_clips: list[str] = field(default_factory=list)
    has_audio: bool = False
    stage_history: list[RenderStage] = field(default_factory=list)


def find_track(edl: dict[str, Any], track_type: str) -> dict[str, Any] | None:
    tracks = (edl.get("timeline") or {}).get("tracks") or []
    for track in tracks:
        if isinstance(track, dict) and track.get("type") == track_type:
            return track
    return None


def _number(value: Any, label: str) -> float:
    if isinstance(value, bool):
        raise EDLValidationError(f"{label} must be a number")
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise EDLValidationError(f"{label} must be a number") from exc
    if math.isnan(parsed) or math.isinf(parsed):
        raise EDLValidationError(f"{label} must be finite")
    return parsed


def _validate_clip_timing_extras(clip: dict[str, Any], clip_id: str) -> None:
    if clip.get("inPoint") is not None:
        if _number(clip["inPoint"], f"Clip {clip_id} inPoint") < 0:
            raise EDLValidationError(f"Clip {clip_id} inPoint must not be negative")

    transitions = clip.get("transitions")
    if transitions is None:
        return
    if not isinstance(transitions, dict):
        raise EDLValidationError(f"Clip {clip_id} transitions must be an object")
    for edge in ("in", "out"):
        transition = transitions.get(edge)
        if transition is None:
            continue
        if not isinstance(transition, dict):
            raise EDLValidationError(f"Clip {clip_id} {edge} transition must be an object")
        if transition.get("duration") is not None:
            label = f"Clip {clip_id} {edge} transition duration"
            if _number(transition["duration"], label) <= 0:
                raise EDLValidationError(f"{label} must be positive")


def validate_edl(edl: Any) -> None:
    """Reject EDLs the pipeline cannot render faithfully.

    The video track is concatenated in list order, so its clips must start at
    zero and follow each other without gaps or overlaps. Audio clips are placed
    by their own start time and only need to be non-negative.
    """
    if not isinstance(edl, dict):
        raise EDLValidationError("EDL must be a JSON object")
    timeline = edl.get("timeline")
    if not isinstance(timeline, dict) or not isinstance(timeline.get("tracks"), list):
        raise EDLValidationError("EDL timeline with a tracks list is required")

    assets = edl.get("assets") or {}
    if not isinstance(assets, dict):
        raise EDLValidationError("EDL assets must be an object keyed by asset id")

    track_types = [t.get("type") for t in timeline["tracks"] if isinstance(t, dict)]
    for track_type in ("video", "audio"):
        if track_types.count(track_type) > 1:
            raise EDLValidationError(f"EDL has more than one {track_type} track")

    video_track = find_track(edl, "video")
    if video_track is None:
        raise EDLValidationError("EDL has no video track")

    video_end = 0.0
    for track in (video_track, find_track(edl, "audio")):
        if track is None:
            continue
        clips = track.get("clips") or []
        if not isinstance(clips, list):
            raise EDLValidationError(f"Track {track.get('id')} clips must be a list")
        for index, clip in enumerate(clips):
            if not isinstance(clip, dict):
                raise EDLValidationError(f"Clip {index} on {track.get('type')} track is not an object")
            clip_id = clip.get("id") or f"#{index}"
            asset_id = clip.get("assetId")
            if asset_id not in assets:
                raise EDLValidationError(f"Clip {clip_id} references unknown asset {asset_id}")
            start = _number(clip.get("startTime", 0), f"Clip {clip_id} startTime")
            duration = _number(clip.get("duration"), f"Clip {clip_id} duration")
            if duration <= 0:
                raise EDLValidationError(f"Clip {clip_id} duration must be positive")
            if start < 0:
                raise EDLValidationError(f"Clip {clip_id} startTime must not be negative")
            _validate_clip_timing_extras(clip, clip_id)
            if track is video_track:
                if abs(start - video_end) > TIMING_TOLERANCE:
                    raise EDLValidationError(
                        f"Clip {clip_id} starts at {start}s but the previous clip ends at "
                        f"{video_end}s; video clips must be contiguous"
                    )
                video_end = start + duration

    declared = timeline.get("duration")
    if declared is not None and abs(_number(declared, "timeline duration") - video_end) > TIMING_TOLERANCE:
        logger.warning(
            "Timeline duration %.3fs does not match video track end %.3fs",
            float(declared),
            video_end,
        )


def asset_extension(asset: dict[str, Any]) -> str:
    source = str(asset.get("source") or "")
    suffix = Path(urllib.parse.urlparse(source).path).suffix
    if suffix:
        return suffix
    asset_type = str(asset.get("type") or "")
    if "image" in asset_type:
        return ".png"
    if "audio" in asset_type:
        return ".mp3"
    return ".mp4"


def parse_gcs_path(gcs_path: str, fallback_bucket: str | None = None) -> tuple[str, str]:
    if gcs_path.startswith("gs://"):
        parts = gcs_path[5:].split("/", 1)
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise RenderError(f"Invalid GCS path: {gcs_path}")
        return parts[0], parts[1]
    if not fallback_bucket:
        raise RenderError(f"No bucket available for path: {gcs_path}")
    return fallback_bucket, gcs_path.lstrip("/")


def _fmt(value: float) -> str:
    text = f"{float(value):.3f}".rstrip("0").rstrip(".")
    return text or "0"


def _escape_concat_path(path: Path) -> str:
    return str(path).replace("'", "'\\''")


class EDLRenderer:
    def __init__(
        self,
        edl: dict[str, Any],
        config: RendererConfig,
        storage_client: storage.Client | None = None,
    ):
        validate_edl(edl)
        self.edl = edl
        self.config = config
        self.assets: dict[str, dict[str, Any]] = edl.get("assets") or {}
        self.output_settings = OutputSettings.from_dict(
            (edl.get("metadata") or {}).get("outputSettings")
        )
        self.encode_settings = EncodeSettings.from_edl(edl)

        self.work_dir = Path(config.work_dir)
        self.assets_dir = self.work_dir / "assets"
        self.clips_dir = self.work_dir / "clips"
        self.output_dir = self.work_dir / "output"

        self.stage: RenderStage | None = None
        self.stage_history: list[RenderStage] = []

        self._storage_client = storage_client
        self._nvenc_encoders: set[str] | None = None
        self._progress_callback: Callable[[int, str | None], None] | None = None

    def render(
        self,
        progress_callback: Callable[[int, str | None], None] | None = None,
    ) -> RenderResult:
        self._progress_callback = progress_callback
        for directory in (self.assets_dir, self.clips_dir, self.output_dir):
            directory.mkdir(parents=True, exist_ok=True)

        try:
            self._enter(RenderStage.DOWNLOADING)
            local_paths = self._download_assets()

            self._enter(RenderStage.RENDERING_CLIPS)
            segments, rendered, skipped = self._render_clips(local_paths)
            if not segments:
                raise RenderError("No clips were rendered")

            self._enter(RenderStage.CONCATENATING)
            video_only = self.output_dir / "video_only.mp4"
            self._concatenate(segments, video_only)

            audio_path: Path | None = None
            audio_track = find_track(self.edl, "audio")
            if audio_track and audio_track.get("clips"):
                self._enter(RenderStage.MIXING_AUDIO)
                audio_path = self._mix_audio(audio_track["clips"], local_paths)
            else:
                logger.info("No narration on the audio track; skipping audio mix")

            self._enter(RenderStage.COMBINING)
            final_path = self.output_dir / f"final.{self.output_settings.format}"
            self._combine(video_only, audio_path, final_path)

            self._enter(RenderStage.DONE)
        except Exception:
            self._enter(RenderStage.FAILED)
            raise

        return RenderResult(
            output_path=final_path,
            rendered_clips=rendered,
            skipped_clips=skipped,
            has_audio=audio_path is not None,
            stage_history=list(self.stage_history),
        )

    def _enter(self, stage: RenderStage) -> None:
        self.stage = stage
        self.stage_history.append(stage)
        logger.info("Stage: %s", stage.value)
        progress = STAGE_PROGRESS.get(stage)
        if self._progress_callback and progress is not None:
            self._progress_callback(progress, f"Stage {stage.value}")

    # ------------------------------------------------------------------
    # Downloading
    # ------------------------------------------------------------------

    def _download_assets(self) -> dict[str, Path]:
        local_paths: dict[str, Path] = {}
        for asset_id, asset in self.assets.items():
            if not asset.get("source"):
                logger.warning("Asset %s has no source; skipping download", asset_id)
                continue
            try:
                local_paths[asset_id] = self._materialize_asset(asset_id, asset)
            except RenderError as exc:
                logger.warning("Asset %s unavailable: %s", asset_id, exc)
        logger.info("Materialized %d of %d assets", len(local_paths), len(self.assets))
        return local_paths

    def _materialize_asset(self, asset_id: str, asset: dict[str, Any]) -> Path:
        source = str(asset["source"])
        local_path = self.assets_dir / f"{asset_id}{asset_extension(asset)}"

        if source.startswith("gs://"):
            bucket_name, blob_path = parse_gcs_path(source)
            self._download_gcs(bucket_name, blob_path, local_path)
            return local_path

        if source.startswith("http://") or source.startswith("https://"):
            self._download_url(source, local_path)
            return local_path

        path = Path(source)
        if not path.exists():
            raise RenderError(f"Asset not found: {source}")
        return path

    def _download_gcs(self, bucket_name: str, blob_path: str, local_path: Path) -> None:
        client = self._get_storage_client()
        blob = client.bucket(bucket_name).blob(blob_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            blob.download_to_filename(str(local_path))
        except Exception as exc:
            raise RenderError(f"Failed to download gs://{bucket_name}/{blob_path}") from exc
        logger.info("Downloaded: gs://%s/%s -> %s", bucket_name, blob_path, local_path)

    def _download_url(self, url: str, local_path: Path) -> None:
        local_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with urllib.request.urlopen(url, timeout=180) as response:
                local_path.write_bytes(response.read())
        except (urllib.error.URLError, OSError) as exc:
            raise RenderError(f"Failed to download {url}") from exc
        logger.info("Downloaded: %s -> %s", url, local_path)

    def _get_storage_client(self) -> storage.Client:
        if self._storage_client:
            return self._storage_client

        credentials_json = self.config.gcp_credentials
        if not credentials_json:
            self._storage_client = storage.Client()
            return self._storage_client

        try:
            credentials_info = json.loads(credentials_json)
        except json.JSONDecodeError as exc:
            raise RenderError("Invalid GCP_CREDENTIALS JSON") from exc

        credentials = service_account.Credentials.from_service_account_info(
            credentials_info
        )
        self._storage_client = storage.Client(
            credentials=credentials, project=credentials_info.get("project_id")
        )
        return self._storage_client

    # ------------------------------------------------------------------
    # Rendering clips
    # ------------------------------------------------------------------

    def _render_clips(
        self, local_paths: dict[str, Path]
    ) -> tuple[list[Path], list[str], list[str]]:
        video_track = find_track(self.edl, "video") or {}
        segments: list[Path] = []
        rendered: list[str] = []
        skipped: list[str] = []

        for index, clip in enumerate(video_track.get("clips") or []):
            clip_id = str(clip.get("id") or f"clip_{index}")
            asset_id = clip.get("assetId")
            asset = self.assets.get(asset_id)
            asset_path = local_paths.get(asset_id)
            if not asset or asset_path is None:
                logger.warning("Skipping clip %s: asset %s not available", clip_id, asset_id)
                skipped.append(clip_id)
                continue

            segment_path = self.clips_dir / f"clip_{index:04d}.mp4"
            try:
                cmd = self._build_clip_command(clip, asset, asset_path, segment_path)
                logger.info("Rendering clip: %s", clip_id)
                self._execute_ffmpeg(cmd)
            except RenderError as exc:
                logger.warning("Skipping clip %s: %s", clip_id, exc)
                skipped.append(clip_id)
                continue

            segments.append(segment_path)
            rendered.append(clip_id)

        if skipped:
            logger.warning(
                "Rendered %d clips, skipped %d; final video is shorter than the EDL timeline",
                len(rendered),
                len(skipped),
            )
        return segments, rendered, skipped

    def _build_clip_command(
        self,
        clip: dict[str, Any],
        asset: dict[str, Any],
        asset_path: Path,
        output_path: Path,
    ) -> list[str]:
        duration = float(clip["duration"])
        settings = self.output_settings
        asset_type = str(asset.get("type") or "")

        if asset_type in IMAGE_ASSET_TYPES:
            input_args = [
                "-loop", "1",
                "-framerate", _fmt(settings.fps),
                "-t", _fmt(duration),
                "-i", str(asset_path),
            ]
            ken_burns = self._find_effect(clip, "ken-burns")
            if ken_burns is not None:
                filters = [
                    build_ken_burns_filter(
                        KenBurnsParams.from_dict(ken_burns.get("params")),
                        duration,
                        settings.width,
                        settings.height,
                        settings.fps,
                    )
                ]
            else:
                filters = [self._normalize_filter()]
        elif asset_type in VIDEO_ASSET_TYPES:
            in_point = float(clip.get("inPoint") or 0)
            input_args = [
                "-ss", _fmt(in_point),
                "-t", _fmt(duration),
                "-i", str(asset_path),
            ]
            # Short sources hold their last frame so every segment has the clip's length.
            filters = [
                self._normalize_filter(),
                f"tpad=stop_mode=clone:stop_duration={_fmt(duration)}",
            ]
        else:
            raise RenderError(f"Unsupported asset type '{asset_type}'")

        filters.extend(self._transition_filters(clip, duration))
        filters.extend(["setsar=1", "format=yuv420p"])

        return [
            self.config.ffmpeg_bin,
            "-y",
            "-hide_banner",
            *input_args,
            "-vf",
            ",".join(filters),
            "-frames:v",
            str(frame_count(duration, settings.fps)),
            "-c:v",
            self._cpu_encoder(),
            "-preset",
            SEGMENT_PRESET,
            "-crf",
            str(SEGMENT_CRF),
            "-pix_fmt",
            "yuv420p",
            "-an",
            str(output_path),
        ]

    def _normalize_filter(self) -> str:
        width = self.output_settings.width
        height = self.output_settings.height
        return (
            f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,"
            f"fps={_fmt(self.output_settings.fps)}"
        )

    def _find_effect(self, clip: dict[str, Any], effect_type: str) -> dict[str, Any] | None:
        for effect in clip.get("effects") or []:
            if isinstance(effect, dict) and effect.get("type") == effect_type:
                return effect
        return None

    def _transition_filters(self, clip: dict[str, Any], duration: float) -> list[str]:
        filters: list[str] = []
        transitions = clip.get("transitions") or {}

        fade_in = transitions.get("in") or {}
        if fade_in.get("type") in FADE_TRANSITION_TYPES:
            fade = min(float(fade_in.get("duration") or DEFAULT_FADE_DURATION), duration)
            filters.append(f"fade=t=in:st=0:d={_fmt(fade)}")

        fade_out = transitions.get("out") or {}
        if fade_out.get("type") in FADE_TRANSITION_TYPES:
            fade = min(float(fade_out.get("duration") or DEFAULT_FADE_DURATION), duration)
            start = max(duration - fade, 0.0)
            filters.append(f"fade=t=out:st={_fmt(start)}:d={_fmt(fade)}")

        return filters

    # ------------------------------------------------------------------
    # Concatenating
    # ------------------------------------------------------------------

    def _concatenate(self, segments: list[Path], output_path: Path) -> None:
        concat_file = self.work_dir / "concat.txt"
        concat_file.write_text(
            "".join(f"file '{_escape_concat_path(p)}'\n" for p in segments),
            encoding="utf-8",
        )
        try:
            use_gpu = self.config.use_gpu and self.encode_settings.use_gpu
            cmd = self._build_concat_command(concat_file, output_path, use_gpu=use_gpu)
            logger.info("Concatenating %d segments", len(segments))
            try:
                self._execute_ffmpeg(cmd)
            except RenderError as exc:
                if not use_gpu or not self._is_gpu_encoder_failure(str(exc)):
                    raise
                logger.warning("GPU encode failed, retrying on CPU encoder. Reason: %s", exc)
                self._execute_ffmpeg(
                    self._build_concat_command(concat_file, output_path, use_gpu=False)
                )
        finally:
            concat_file.unlink(missing_ok=True)

    def _build_concat_command(
        self, concat_file: Path, output_path: Path, use_gpu: bool = False
    ) -> list[str]:
        return [
            self.config.ffmpeg_bin,
            "-y",
            "-hide_banner",
            "-f",
            "concat",
            "-safe",
            "0",
            "-i",
            str(concat_file),
            *self._video_encoding_options(use_gpu),
            "-pix_fmt",
            "yuv420p",
            "-an",
            str(output_path),
        ]

    def _video_encoding_options(self, use_gpu: bool) -> list[str]:
        codec = self.output_settings.codec
        preset = self.encode_settings.preset
        crf = self.encode_settings.crf
        options: list[str]

        gpu_encoder = self._gpu_encoder(codec) if use_gpu else None
        if gpu_encoder:
            options = [
                "-c:v", gpu_encoder,
                "-preset", self._map_nvenc_preset(preset),
                "-rc", "vbr",
                "-cq", str(crf),
            ]
        else:
            if use_gpu:
                logger.warning("No NVENC encoder for %s available; using CPU encoder", codec)
            options = ["-c:v", self._cpu_encoder(), "-preset", preset, "-crf", str(crf)]

        bitrate = self.output_settings.bitrate
        if bitrate:
            options.extend(["-maxrate", str(bitrate)])
            bufsize = self._double_bitrate(str(bitrate))
            if bufsize:
                options.extend(["-bufsize", bufsize])
        return options

    def _cpu_encoder(self) -> str:
        return "libx265" if self.output_settings.codec in {"h265", "hevc"} else "libx264"

    def _gpu_encoder(self, codec: str) -> str | None:
        name = "hevc_nvenc" if codec in {"h265", "hevc"} else "h264_nvenc"
        return name if name in self._detect_nvenc_encoders() else None

    def _detect_nvenc_encoders(self) -> set[str]:
        if self._nvenc_encoders is not None:
            return self._nvenc_encoders
        try:
            result = subprocess.run(
                [self.config.ffmpeg_bin, "-hide_banner", "-encoders"],
                capture_output=True,
                text=True,
                check=True,
            )
            output = result.stdout or ""
        except (FileNotFoundError, subprocess.CalledProcessError) as exc:
            logger.warning("Failed to probe FFmpeg encoders: %s", exc)
            output = ""
        self._nvenc_encoders = {name for name in ("h264_nvenc", "hevc_nvenc") if name in output}
        return self._nvenc_encoders

    def _is_gpu_encoder_failure(self, error_text: str) -> bool:
        text = error_text.lower()
        keywords = [
            "nvenc",
            "no capable devices found",
            "cannot load libcuda",
            "cuda error",
            "device not available",
            "hardware device",
            "unsupported device",
        ]
        return any(keyword in text for keyword in keywords)

    def _map_nvenc_preset(self, preset: str) -> str:
        mapping = {
            "ultrafast": "fast",
            "superfast": "fast",
            "veryfast": "fast",
            "faster": "fast",
            "fast": "fast",
            "medium": "medium",
            "slow": "slow",
            "slower": "slow",
            "veryslow": "slow",
        }
        return mapping.get(preset, "medium")

    def _double_bitrate(self, bitrate: str) -> str | None:
        match = re.fullmatch(r"\s*(\d+(?:\.\d+)?)([kKmMgG])\s*", bitrate)
        if not match:
            return None
        value = float(match.group(1)) * 2
        unit = match.group(2)
        if value.is_integer():
            value_str = str(int(value))
        else:
            value_str = f"{value:.2f}".rstrip("0").rstrip(".")
        return f"{value_str}{unit}"

    # ------------------------------------------------------------------
    # Mixing audio
    # ------------------------------------------------------------------

    def _mix_audio(
        self, audio_clips: list[dict[str, Any]], local_paths: dict[str, Path]
    ) -> Path | None:
        inputs: list[tuple[dict[str, Any], Path]] = []
        for clip in audio_clips:
            path = local_paths.get(clip.get("assetId"))
            if path is None:
                logger.warning("Audio clip %s has no local asset; leaving it out of the mix", clip.get("id"))
                continue
            inputs.append((clip, path))

        if not inputs:
            logger.warning("No narration audio could be materialized; continuing without audio")
            return None

        output_path = self.output_dir / "audio_mixed.aac"
        try:
            self._execute_ffmpeg(self._build_mix_command(inputs, output_path))
        except RenderError as exc:
            logger.warning("Audio mixing failed, continuing without audio: %s", exc)
            return None
        return output_path

    def _build_mix_command(
        self, inputs: list[tuple[dict[str, Any], Path]], output_path: Path
    ) -> list[str]:
        cmd = [self.config.ffmpeg_bin, "-y", "-hide_banner"]
        filter_parts: list[str] = []
        for index, (clip, path) in enumerate(inputs):
            cmd.extend(["-i", str(path)])
            delay_ms = round(float(clip.get("startTime") or 0) * 1000)
            filter_parts.append(f"[{index}:a]adelay={delay_ms}:all=1[a{index}]")

        labels = "".join(f"[a{index}]" for index in range(len(inputs)))
        filter_parts.append(
            f"{labels}amix=inputs={len(inputs)}:duration=longest"
            ":dropout_transition=0:normalize=0[aout]"
        )
        cmd.extend(
            [
                "-filter_complex",
                ";".join(filter_parts),
                "-map",
                "[aout]",
                "-c:a",
                "aac",
                "-b:a",
                self.output_settings.audio_bitrate,
                str(output_path),
            ]
        )
        return cmd

    # ------------------------------------------------------------------
    # Combining
    # ------------------------------------------------------------------

    def _combine(self, video_path: Path, audio_path: Path | None, output_path: Path) -> None:
        self._execute_ffmpeg(self._build_combine_command(video_path, audio_path, output_path))
        if not output_path.exists():
            raise RenderError(f"Render output not found: {output_path}")

    def _build_combine_command(
        self, video_path: Path, audio_path: Path | None, output_path: Path
    ) -> list[str]:
        cmd = [self.config.ffmpeg_bin, "-y", "-hide_banner", "-i", str(video_path)]
        if audio_path is not None:
            cmd.extend(
                [
                    "-i",
                    str(audio_path),
                    "-map",
                    "0:v:0",
                    "-map",
                    "1:a:0",
                    "-c:v",
                    "copy",
                    "-c:a",
                    self._audio_encoder(),
                    "-b:a",
                    self.output_settings.audio_bitrate,
                    "-shortest",
                ]
            )
        else:
            cmd.extend(["-map", "0:v:0", "-c:v", "copy", "-an"])
        cmd.append(str(output_path))
        return cmd

    def _audio_encoder(self) -> str:
        mapping = {"aac": "aac", "mp3": "libmp3lame", "opus": "libopus"}
        return mapping.get(self.output_settings.audio_codec, "aac")

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def output_blob_path(self) -> str:
        return f"jobs/{self.config.job_id}/output/final.{self.output_settings.format}"

    def upload_output(self, output_path: Path) -> str | None:
        if not output_path.exists():
            raise RenderError(f"Render output not found: {output_path}")

        bucket_name = self.config.bucket_name
        if not bucket_name or bucket_name == "local":
            logger.info("Skipping GCS upload for local output bucket")
            return None

        blob_path = self.output_blob_path()
        client = self._get_storage_client()
        blob = client.bucket(bucket_name).blob(blob_path)
        try:
            blob.upload_from_filename(str(output_path))
        except Exception as exc:
            raise RenderError(
                f"Failed to upload render output to gs://{bucket_name}/{blob_path}"
            ) from exc
        output_url = f"gs://{bucket_name}/{blob_path}"
        logger.info("Uploaded: %s -> %s", output_path, output_url)
        return output_url

    # ------------------------------------------------------------------
    # FFmpeg process
    # ------------------------------------------------------------------

    def _execute_ffmpeg(self, cmd: list[str]) -> str:
        output_path = cmd[-1]
        logger.info("Command: %s", self._format_command(cmd))

        timeout_seconds = self.config.ffmpeg_timeout_seconds
        output_tail: list[str] = []
        timed_out = False

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise RenderError(f"Failed to execute FFmpeg: {exc}") from exc

        def _kill_process_on_timeout() -> None:
            nonlocal timed_out
            timed_out = True
            process.kill()

        timer: threading.Timer | None = None
        if timeout_seconds > 0:
            timer = threading.Timer(timeout_seconds, _kill_process_on_timeout)
            timer.daemon = True
            timer.start()

        try:
            if process.stdout is not None:
                for line in process.stdout:
                    line = line.strip()
                    if line:
                        output_tail.append(line)
                        if len(output_tail) > 200:
                            output_tail = output_tail[-200:]
            process.wait()
        finally:
            if timer is not None:
                timer.cancel()
            if process.poll() is None:
                process.kill()
                process.wait()
            if process.stdout is not None:
                process.stdout.close()

        if timed_out:
            tail_text = "\n".join(output_tail[-40:])
            raise RenderError(
                f"FFmpeg timed out after {timeout_seconds}s. Output tail:\n{tail_text}"
            )
        if process.returncode != 0:
            tail_text = "\n".join(output_tail[-40:])
            raise RenderError(f"FFmpeg failed (code {process.returncode}). Output:\n{tail_text}")

        logger.debug("FFmpeg output (tail): %s", "\n".join(output_tail[-20:]))
        return output_path

    def _format_command(self, cmd: list[str]) -> str:
        text = " ".join(cmd)
        if len(text) > 4000:
            return f"{text[:4000]}... [truncated]"
        return text

    def cleanup(self) -> None:
        if self.work_dir.exists():
            shutil.rmtree(self.work_dir, ignore_errors=True)
