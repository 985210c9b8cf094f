from __future__ import annotations

import json
import logging
from typing import Any, Protocol
from uuid import uuid4

from models.api_models import (
    JobStatus,
    JobStatusResponse,
    RenderExecution,
    RenderResponse,
)
from operators.asset_operator import ObjectStore
from operators.edl_operator import validate_edl
from utils.cloud_run_jobs import JobExecution, JobExecutionRequest


logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_FORMAT = "mp4"


class RenderJobNotFoundError(Exception):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class RenderDispatcher(Protocol):
    def execute_render_job(self, request: JobExecutionRequest) -> JobExecution | None: ...


def edl_blob_path(job_id: str) -> str:
    return f"jobs/{job_id}/edl.json"


def output_blob_path(job_id: str, output_format: str = DEFAULT_OUTPUT_FORMAT) -> str:
    return f"jobs/{job_id}/output/final.{output_format}"


def persist_edl(store: ObjectStore, job_id: str, document: dict[str, Any]) -> str:
    edl_uri = store.put(
        edl_blob_path(job_id),
        json.dumps(document, indent=2),
        "application/json",
    )
    logger.info(f"[{job_id}] EDL saved to {edl_uri}")
    return edl_uri


def dispatch_render(
    dispatcher: RenderDispatcher,
    job_id: str,
    edl_uri: str,
    use_gpu: bool = False,
) -> RenderExecution | None:
    """Hand the EDL to the render job. Never raises; None means not dispatched."""
    logger.info(f"[{job_id}] Dispatching render job...")
    try:
        execution = dispatcher.execute_render_job(
            JobExecutionRequest(job_id=job_id, edl_gcs_path=edl_uri, use_gpu=use_gpu)
        )
    except Exception as exc:
        logger.warning(f"[{job_id}] Could not dispatch render job: {exc}")
        return None

    if execution is None:
        logger.warning(
            f"[{job_id}] Could not dispatch render job (Cloud Run Jobs may not be configured)"
        )
        return None

    logger.info(f"[{job_id}] Render job dispatched: {execution.execution_name}")
    return RenderExecution(
        execution_name=execution.execution_name,
        job_name=execution.job_name,
        status=execution.status,
    )


def submit_edl(
    document: Any,
    store: ObjectStore,
    dispatcher: RenderDispatcher,
    job_id: str | None = None,
) -> RenderResponse:
    edl = validate_edl(document)
    job_id = job_id or str(uuid4())

    edl_uri = persist_edl(store, job_id, document)
    execution = dispatch_render(dispatcher, job_id, edl_uri, edl.render_settings.use_gpu)

    return RenderResponse(
        job_id=job_id,
        status=JobStatus.RENDERING,
        edl_path=edl_uri,
        render_execution=execution,
        degraded=execution is None,
    )


def _requested_output_format(store: ObjectStore, edl_path: str) -> str:
    raw = store.get(edl_path)
    if not raw:
        return DEFAULT_OUTPUT_FORMAT
    try:
        document = json.loads(raw)
    except ValueError:
        return DEFAULT_OUTPUT_FORMAT
    if not isinstance(document, dict):
        return DEFAULT_OUTPUT_FORMAT
    output_settings = (document.get("metadata") or {}).get("outputSettings") or {}
    output_format = output_settings.get("format") if isinstance(output_settings, dict) else None
    if isinstance(output_format, str) and output_format.strip():
        return output_format.strip()
    return DEFAULT_OUTPUT_FORMAT


def get_job_status(store: ObjectStore, job_id: str) -> JobStatusResponse:
    """Status comes only from which artifacts exist; there is no job ledger.

    The renderer writes `final.<format>` using the EDL's output format, so the
    stored EDL decides which output name counts as done.
    """
    edl_path = edl_blob_path(job_id)
    candidates = [output_blob_path(job_id, _requested_output_format(store, edl_path))]
    if candidates[0] != output_blob_path(job_id):
        candidates.append(output_blob_path(job_id))

    for output_path in candidates:
        if store.exists(output_path):
            return JobStatusResponse(
                job_id=job_id,
                status=JobStatus.COMPLETED,
                output_path=store.uri(output_path),
                completed_at=store.updated_at(output_path),
            )

    if store.exists(edl_path):
        return JobStatusResponse(
            job_id=job_id,
            status=JobStatus.RENDERING,
            edl_path=store.uri(edl_path),
        )

    raise RenderJobNotFoundError(job_id)
