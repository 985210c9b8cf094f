from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Callable


DEFAULT_START_ZOOM = 1.0
DEFAULT_END_ZOOM = 1.15
HEADROOM_FACTOR = 1.5


def linear(t: float) -> float:
    return t


def ease_in(t: float) -> float:
    return t * t


def ease_out(t: float) -> float:
    return 1 - (1 - t) * (1 - t)


def ease_in_out(t: float) -> float:
    return (1 - math.cos(math.pi * t)) / 2


EASING_FUNCTIONS: dict[str, Callable[[float], float]] = {
    "linear": linear,
    "ease-in": ease_in,
    "ease-out": ease_out,
    "ease-in-out": ease_in_out,
}

# ffmpeg expression templates; {p} is the normalized progress expression.
EASING_EXPRESSIONS: dict[str, str] = {
    "linear": "{p}",
    "ease-in": "pow({p},2)",
    "ease-out": "(1-pow(1-{p},2))",
    "ease-in-out": "(1-cos(PI*{p}))/2",
}


def resolve_easing(name: str | None) -> str:
    if not name or name not in EASING_FUNCTIONS:
        return "linear"
    return name


def interpolate(start: float, end: float, progress: float, easing: str | None = None) -> float:
    if progress <= 0:
        return start
    if progress >= 1:
        return end
    eased = EASING_FUNCTIONS[resolve_easing(easing)](progress)
    return start + (end - start) * eased


def _as_float(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(parsed) or math.isinf(parsed):
        return default
    return parsed


@dataclass(frozen=True)
class KenBurnsParams:
    start_zoom: float = DEFAULT_START_ZOOM
    end_zoom: float = DEFAULT_END_ZOOM
    start_x: float = 0.0
    start_y: float = 0.0
    end_x: float = 0.0
    end_y: float = 0.0
    easing: str = "linear"

    @classmethod
    def from_dict(cls, params: dict[str, Any] | None) -> KenBurnsParams:
        """Build params from an EDL effect payload (camelCase keys).

        Missing zoom values fall back to a mild 1.0 -> 1.15 zoom-in and missing
        pan values to zero. Unknown easings resolve to linear.
        """
        params = params or {}
        return cls(
            start_zoom=_as_float(params.get("startZoom"), DEFAULT_START_ZOOM),
            end_zoom=_as_float(params.get("endZoom"), DEFAULT_END_ZOOM),
            start_x=_as_float(params.get("startX"), 0.0),
            start_y=_as_float(params.get("startY"), 0.0),
            end_x=_as_float(params.get("endX"), 0.0),
            end_y=_as_float(params.get("endY"), 0.0),
            easing=resolve_easing(params.get("easing")),
        )

    @property
    def max_zoom(self) -> float:
        return max(self.start_zoom, self.end_zoom)


def zoom_at(params: KenBurnsParams, time_s: float, duration: float) -> float:
    if duration <= 0:
        return params.end_zoom if time_s > 0 else params.start_zoom
    return interpolate(params.start_zoom, params.end_zoom, time_s / duration, params.easing)


def pan_at(
    params: KenBurnsParams,
    time_s: float,
    duration: float,
    width: int,
    height: int,
) -> tuple[float, float]:
    """Pan offset in pixels; X/Y in [-1, 1] map to half the frame size."""
    progress = 1.0 if duration <= 0 else time_s / duration
    x = interpolate(params.start_x, params.end_x, progress, params.easing)
    y = interpolate(params.start_y, params.end_y, progress, params.easing)
    return x * width / 2, y * height / 2


def frame_count(duration: float, fps: float) -> int:
    return max(1, math.ceil(duration * fps))


def prescale_dimensions(params: KenBurnsParams, width: int, height: int) -> tuple[int, int]:
    factor = max(params.max_zoom, 1.0) * HEADROOM_FACTOR
    return math.ceil(width * factor), math.ceil(height * factor)


def _fmt(value: float) -> str:
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


def _eased_expr(easing: str, progress_expr: str) -> str:
    return EASING_EXPRESSIONS[resolve_easing(easing)].format(p=progress_expr)


def _lerp_expr(start: float, end: float, eased: str) -> str:
    if start == end:
        return _fmt(start)
    return f"{_fmt(start)}+({_fmt(end - start)})*{eased}"


def build_ken_burns_filter(
    params: KenBurnsParams,
    duration: float,
    width: int,
    height: int,
    fps: float,
) -> str:
    """Return the scale + zoompan filter chain for one still image clip.

    Progress inside zoompan is driven by the output frame number so the first
    frame sits exactly at the start values and the last frame at the end values.
    """
    total_frames = frame_count(duration, fps)
    scale_width, scale_height = prescale_dimensions(params, width, height)

    progress = f"min(on/{max(total_frames - 1, 1)},1)"
    eased = _eased_expr(params.easing, progress)

    zoom_expr = _lerp_expr(params.start_zoom, params.end_zoom, eased)
    pan_x_expr = _lerp_expr(params.start_x * width / 2, params.end_x * width / 2, eased)
    pan_y_expr = _lerp_expr(params.start_y * height / 2, params.end_y * height / 2, eased)

    return (
        f"scale={scale_width}:{scale_height},"
        f"zoompan=z='{zoom_expr}'"
        f":x='iw/2-(iw/zoom/2)+({pan_x_expr})'"
        f":y='ih/2-(ih/zoom/2)+({pan_y_expr})'"
        f":d=1:s={width}x{height}:fps={_fmt(fps)}"
    )
