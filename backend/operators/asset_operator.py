from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Protocol

from models.api_models import VoiceConfig
from models.edl_models import (
    Asset,
    AssetType,
    Scene,
    Script,
    VisualType,
    audio_asset_id,
    visual_asset_id,
)
from utils.image_provider import ImageResult
from utils.pexels_provider import FootageMatch
from utils.speech_provider import SpeechResult


logger = logging.getLogger(__name__)

WORDS_PER_MINUTE = 150

IMAGE_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
}


class AssetGenerationError(Exception):
    def __init__(self, asset_id: str, message: str):
        self.asset_id = asset_id
        super().__init__(f"{asset_id}: {message}")


class ImageGenerator(Protocol):
    def generate(self, prompt: str) -> ImageResult: ...


class SpeechSynthesizer(Protocol):
    def synthesize(self, text: str, voice: VoiceConfig | None = None) -> SpeechResult: ...


class FootageSource(Protocol):
    def find(self, query: str, min_duration: float = 5) -> FootageMatch: ...

    def download(self, url: str) -> bytes: ...


class ObjectStore(Protocol):
    def uri(self, path: str) -> str: ...

    def put(self, path: str, data: bytes | str, content_type: str) -> str: ...

    def get(self, path: str) -> bytes | None: ...

    def exists(self, path: str) -> bool: ...

    def updated_at(self, path: str) -> str | None: ...


@dataclass
class AssetProviders:
    images: ImageGenerator
    speech: SpeechSynthesizer
    footage: FootageSource
    store: ObjectStore


def estimate_narration_duration(text: str, speaking_rate: float = 1.0) -> float:
    words = len(text.split())
    return words / (WORDS_PER_MINUTE * (speaking_rate or 1.0)) * 60


def asset_blob_path(job_id: str, asset_id: str, extension: str) -> str:
    return f"jobs/{job_id}/assets/{asset_id}{extension}"


def fetch_footage_asset(
    job_id: str,
    asset_id: str,
    query: str | None,
    min_duration: float,
    providers: AssetProviders,
) -> Asset:
    if not query:
        raise AssetGenerationError(asset_id, "no search query for stock footage")

    match = providers.footage.find(query, min_duration)
    payload = providers.footage.download(match.url)
    source = providers.store.put(
        asset_blob_path(job_id, asset_id, ".mp4"), payload, "video/mp4"
    )
    return Asset(
        id=asset_id,
        type=AssetType.PEXELS_VIDEO,
        source=source,
        search_query=query,
    )


def generate_image_asset(job_id: str, scene: Scene, providers: AssetProviders) -> Asset:
    """Generate the scene still; on any failure fall back to stock footage."""
    asset_id = visual_asset_id(scene.id)
    try:
        result = providers.images.generate(scene.image_prompt or "")
        extension = IMAGE_EXTENSIONS.get(result.content_type.lower(), ".png")
        source = providers.store.put(
            asset_blob_path(job_id, asset_id, extension),
            result.image_bytes,
            result.content_type,
        )
        return Asset(
            id=asset_id,
            type=AssetType.GENERATED_IMAGE,
            source=source,
            prompt=scene.image_prompt,
        )
    except Exception as exc:
        logger.warning(
            f"[{job_id}] Image generation failed for {asset_id}, falling back to stock footage: {exc}"
        )

    query = scene.search_query or scene.visual_description
    try:
        return fetch_footage_asset(job_id, asset_id, query, scene.duration, providers)
    except AssetGenerationError:
        raise
    except Exception as exc:
        raise AssetGenerationError(asset_id, f"stock footage fallback failed: {exc}") from exc


def generate_video_asset(job_id: str, scene: Scene, providers: AssetProviders) -> Asset:
    asset_id = visual_asset_id(scene.id)
    try:
        return fetch_footage_asset(
            job_id, asset_id, scene.search_query, scene.duration, providers
        )
    except AssetGenerationError:
        raise
    except Exception as exc:
        raise AssetGenerationError(asset_id, f"stock footage search failed: {exc}") from exc


def generate_narration_asset(
    job_id: str,
    scene: Scene,
    providers: AssetProviders,
    voice: VoiceConfig | None = None,
) -> Asset:
    asset_id = audio_asset_id(scene.id)
    try:
        result = providers.speech.synthesize(scene.narration, voice)
        source = providers.store.put(
            asset_blob_path(job_id, asset_id, ".mp3"),
            result.audio_bytes,
            result.content_type or "audio/mpeg",
        )
    except Exception as exc:
        raise AssetGenerationError(asset_id, f"speech synthesis failed: {exc}") from exc

    speaking_rate = voice.speaking_rate if voice else 1.0
    duration = result.duration or estimate_narration_duration(scene.narration, speaking_rate)
    return Asset(
        id=asset_id,
        type=AssetType.GENERATED_AUDIO,
        source=source,
        duration=duration,
    )


def plan_asset_slots(
    job_id: str,
    script: Script,
    providers: AssetProviders,
    voice: VoiceConfig | None = None,
) -> list[tuple[str, Callable[[], Asset]]]:
    """One callable per (scene, role) slot; a slot is only issued when its inputs exist."""
    slots: list[tuple[str, Callable[[], Asset]]] = []
    for scene in script.scenes:
        if scene.visual_type == VisualType.IMAGE and scene.image_prompt:
            slots.append(
                (visual_asset_id(scene.id), lambda s=scene: generate_image_asset(job_id, s, providers))
            )
        elif scene.visual_type == VisualType.VIDEO and scene.search_query:
            slots.append(
                (visual_asset_id(scene.id), lambda s=scene: generate_video_asset(job_id, s, providers))
            )

        if scene.narration:
            slots.append(
                (
                    audio_asset_id(scene.id),
                    lambda s=scene: generate_narration_asset(job_id, s, providers, voice),
                )
            )
    return slots


def generate_assets(
    job_id: str,
    script: Script,
    providers: AssetProviders,
    voice: VoiceConfig | None = None,
    max_workers: int | None = None,
) -> dict[str, Asset]:
    """Run every asset slot concurrently and collect whatever resolved.

    Each slot owns exactly one key. Failed slots are logged and left out of
    the map; they never cancel their siblings.
    """
    slots = plan_asset_slots(job_id, script, providers, voice)
    logger.info(f"[{job_id}] Generating {len(slots)} assets...")
    if not slots:
        return {}

    results: dict[str, Asset] = {}
    pool_size = min(max_workers, len(slots)) if max_workers and max_workers > 0 else len(slots)
    with ThreadPoolExecutor(max_workers=pool_size) as executor:
        futures = {executor.submit(task): asset_id for asset_id, task in slots}

        for future in as_completed(futures):
            asset_id = futures[future]
            try:
                results[asset_id] = future.result()
            except Exception as exc:
                logger.warning(f"[{job_id}] Asset slot {asset_id} unresolved: {exc}")

    ordered = {asset_id: results[asset_id] for asset_id, _ in slots if asset_id in results}
    logger.info(f"[{job_id}] Resolved {len(ordered)} of {len(slots)} assets")
    return ordered
