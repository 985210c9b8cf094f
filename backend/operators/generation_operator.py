from __future__ import annotations

import logging
from typing import Protocol
from uuid import uuid4

from config import AppConfig
from models.api_models import GenerateRequest, GenerationResult, JobStatus
from models.edl_models import Script
from operators.asset_operator import AssetProviders, generate_assets
from operators.edl_operator import build_edl, find_dropped_scenes
from operators.render_operator import RenderDispatcher, dispatch_render, persist_edl


logger = logging.getLogger(__name__)


class TopicRequiredError(ValueError):
    pass


class ScriptGenerator(Protocol):
    def generate(self, topic: str, target_duration: int) -> Script: ...


def orchestrate_video_generation(
    request: GenerateRequest,
    script_provider: ScriptGenerator,
    providers: AssetProviders,
    dispatcher: RenderDispatcher,
    config: AppConfig,
) -> GenerationResult:
    """Topic to dispatched render: script, asset fan-out, EDL, persist, dispatch.

    Only a failed script aborts the job. Missing assets shrink the timeline and
    a failed dispatch marks the result degraded.
    """
    topic = (request.topic or "").strip()
    if not topic:
        raise TopicRequiredError("Topic is required")

    job_id = request.job_id or str(uuid4())
    target_duration = request.target_duration or config.default_target_duration
    options = request.options

    logger.info(f"[{job_id}] Starting video orchestration for topic: {topic}")

    logger.info(f"[{job_id}] Generating script...")
    script = script_provider.generate(topic, target_duration)
    logger.info(f"[{job_id}] Generated {len(script.scenes)} scenes")

    assets = generate_assets(
        job_id,
        script,
        providers,
        voice=options.voice,
        max_workers=config.asset_workers,
    )

    logger.info(f"[{job_id}] Building EDL...")
    dropped = find_dropped_scenes(script, assets)
    edl = build_edl(script, assets, options, job_id=job_id)
    if dropped:
        logger.warning(
            f"[{job_id}] {len(dropped)} of {len(script.scenes)} scenes dropped: {', '.join(dropped)}"
        )

    edl_uri = persist_edl(providers.store, job_id, edl.to_document())
    execution = dispatch_render(dispatcher, job_id, edl_uri, edl.render_settings.use_gpu)

    return GenerationResult(
        job_id=job_id,
        status=JobStatus.PROCESSING,
        edl_path=edl_uri,
        script=script,
        asset_count=len(assets),
        estimated_duration=edl.timeline.duration,
        dropped_scenes=dropped,
        render_execution=execution,
        degraded=execution is None,
    )
