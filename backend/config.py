from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class AppConfig:
    project_id: str = ""
    location: str = "us-central1"
    bucket_name: str = "hybrid-video-assets"
    renderer_job_name: str = "video-renderer"
    render_execution_mode: str = "cloud"
    pexels_api_key: str = ""
    google_api_key: str = ""
    openrouter_api_key: str = ""
    script_model: str = "google/gemini-2.5-pro"
    image_model: str = "google/gemini-2.5-flash-image-preview"
    tts_voice_name: str = "en-US-Neural2-D"
    gcp_credentials: str = ""
    asset_workers: int = 0
    default_target_duration: int = 120
    port: int = 8080

    @classmethod
    def from_env(cls) -> AppConfig:
        return cls(
            project_id=os.getenv("GOOGLE_CLOUD_PROJECT") or os.getenv("PROJECT_ID", ""),
            location=os.getenv("LOCATION", "us-central1"),
            bucket_name=os.getenv("GCS_BUCKET", "hybrid-video-assets"),
            renderer_job_name=os.getenv("RENDERER_JOB_NAME", "video-renderer"),
            render_execution_mode=os.getenv("RENDER_EXECUTION_MODE", "cloud").strip().lower(),
            pexels_api_key=os.getenv("PEXELS_API_KEY", "").strip(),
            google_api_key=os.getenv("GOOGLE_API_KEY", "").strip().strip('"').strip("'"),
            openrouter_api_key=os.getenv("OPENROUTER_API_KEY", "").strip(),
            script_model=os.getenv("SCRIPT_MODEL", "google/gemini-2.5-pro"),
            image_model=os.getenv("IMAGE_MODEL", "google/gemini-2.5-flash-image-preview"),
            tts_voice_name=os.getenv("TTS_VOICE_NAME", "en-US-Neural2-D"),
            gcp_credentials=os.getenv("GCP_CREDENTIALS", ""),
            asset_workers=max(0, _int_env("ASSET_WORKERS", 0)),
            default_target_duration=max(1, _int_env("DEFAULT_TARGET_DURATION", 120)),
            port=_int_env("PORT", 8080),
        )


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    return AppConfig.from_env()
