#!/usr/bin/env python3


import argparse
import dataclasses
import json
import logging
import os
import sys
from pathlib import Path


from google.cloud import storage
from google.oauth2 import service_account


from edl_renderer import (
    EDLRenderer,
    RendererConfig,
    RenderError,
    parse_gcs_path,
)


logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("render-job")


def parse_args(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(description="EDL video render job")
    parser.add_argument(
        "--edl",
        default=None,
        help="GCS path, bucket-relative path or local path to the EDL (overrides EDL_PATH)",
    )
    parser.add_argument(
        "--job-id",
        default=None,
        help="Render job ID (overrides JOB_ID)",
    )
    return parser.parse_args(argv)


def _get_storage_client(credentials_json: str | None) -> storage.Client:
    if not credentials_json:
        return storage.Client()

    try:
        credentials_info = json.loads(credentials_json)
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid GCP_CREDENTIALS JSON") from exc

    credentials = service_account.Credentials.from_service_account_info(
        credentials_info
    )
    return storage.Client(
        credentials=credentials, project=credentials_info.get("project_id")
    )


def load_edl(
    edl_path: str,
    config: RendererConfig,
    storage_client: storage.Client | None = None,
) -> dict:
    path = Path(edl_path)
    if path.exists():
        logger.info(f"Loading EDL from {edl_path}")
        return json.loads(path.read_text(encoding="utf-8"))

    if not edl_path.startswith("gs://") and edl_path.startswith("/"):
        raise RenderError(f"EDL file not found: {edl_path}")

    bucket_name, blob_path = parse_gcs_path(edl_path, fallback_bucket=config.bucket_name)
    logger.info(f"Downloading EDL from gs://{bucket_name}/{blob_path}")

    client = storage_client or _get_storage_client(config.gcp_credentials)
    blob = client.bucket(bucket_name).blob(blob_path)
    try:
        edl_json = blob.download_as_text()
    except Exception as exc:
        raise RenderError(f"Failed to download EDL gs://{bucket_name}/{blob_path}") from exc
    return json.loads(edl_json)


def resolve_config(args) -> RendererConfig:
    config = RendererConfig.from_env()
    overrides = {}
    if args.job_id:
        overrides["job_id"] = args.job_id
    if args.edl:
        overrides["edl_path"] = args.edl
    if overrides:
        config = dataclasses.replace(config, **overrides)
    return config


def print_banner(config: RendererConfig) -> None:
    logger.info("=" * 60)
    logger.info("EDL render job")
    logger.info(f"Job ID:   {config.job_id}")
    logger.info(f"EDL path: {config.edl_path}")
    logger.info(f"Work dir: {config.work_dir}")
    logger.info(f"GPU:      {'enabled' if config.use_gpu else 'disabled'}")
    logger.info("=" * 60)


def run(config: RendererConfig, storage_client: storage.Client | None = None) -> int:
    if not config.job_id or not config.edl_path:
        logger.error("JOB_ID and EDL_PATH are required")
        return 1

    print_banner(config)
    renderer: EDLRenderer | None = None

    try:
        edl = load_edl(config.edl_path, config, storage_client)
        logger.info(f"Processing render job {config.job_id}")
        logger.info(f"EDL title: {(edl.get('metadata') or {}).get('title')}")

        renderer = EDLRenderer(edl, config, storage_client=storage_client)

        def progress_callback(progress: int, message: str | None = None):
            logger.info(f"Progress: {progress}%" + (f" ({message})" if message else ""))

        result = renderer.render(progress_callback=progress_callback)
        logger.info(
            f"Render complete: {result.output_path} "
            f"({len(result.rendered_clips)} clips, "
            f"{len(result.skipped_clips)} skipped, "
            f"audio={'yes' if result.has_audio else 'no'})"
        )

        output_url = renderer.upload_output(result.output_path)
        if output_url:
            logger.info(f"Output available at {output_url}")

        logger.info("Job completed successfully")
        return 0

    except RenderError as e:
        logger.error(f"Render failed: {e}")
        return 1

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1

    finally:
        if renderer is not None:
            renderer.cleanup()


def main():
    args = parse_args()
    sys.exit(run(resolve_config(args)))


if __name__ == "__main__":
    main()
