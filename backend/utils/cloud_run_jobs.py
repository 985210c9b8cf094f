from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass
from typing import Any

from config import AppConfig, get_config


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CloudRunConfig:
    project_id: str
    region: str
    renderer_job_name: str = "video-renderer"
    bucket_name: str = "hybrid-video-assets"
    execution_mode: str = "cloud"

    @classmethod
    def from_app_config(cls, config: AppConfig) -> CloudRunConfig:
        return cls(
            project_id=config.project_id,
            region=config.location,
            renderer_job_name=config.renderer_job_name,
            bucket_name=config.bucket_name,
            execution_mode=config.render_execution_mode,
        )

    @classmethod
    def from_env(cls) -> CloudRunConfig:
        return cls.from_app_config(get_config())

    @property
    def full_job_name(self) -> str:
        return (
            f"projects/{self.project_id}/"
            f"locations/{self.region}/"
            f"jobs/{self.renderer_job_name}"
        )


@dataclass
class JobExecution:
    execution_name: str
    job_name: str
    status: str
    create_time: str | None = None
    error_message: str | None = None


@dataclass
class JobExecutionRequest:
    job_id: str
    edl_gcs_path: str
    use_gpu: bool = False


class CloudRunJobsClient:
    def __init__(self, config: CloudRunConfig | None = None, jobs_client: Any | None = None):
        self.config = config or CloudRunConfig.from_env()
        self._jobs_client = jobs_client
        self._run_v2 = None
        self._initialized = jobs_client is not None

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        self._initialized = True

        try:
            self._run_v2 = importlib.import_module("google.cloud.run_v2")  # type: ignore[import-not-found]
            self._jobs_client = self._run_v2.JobsClient()
            logger.info("Cloud Run Jobs client initialized")
        except ImportError:
            logger.warning(
                "google-cloud-run not installed. "
                "Install with: pip install google-cloud-run"
            )
            self._jobs_client = None
        except Exception as e:
            logger.error(f"Failed to initialize Cloud Run client: {e}")
            self._jobs_client = None

    def build_run_request(self, request: JobExecutionRequest) -> Any:
        run_v2 = self._run_v2 or importlib.import_module("google.cloud.run_v2")  # type: ignore[import-not-found]
        return run_v2.RunJobRequest(
            name=self.config.full_job_name,
            overrides=run_v2.RunJobRequest.Overrides(
                container_overrides=[
                    run_v2.RunJobRequest.Overrides.ContainerOverride(
                        env=[
                            run_v2.EnvVar(name="JOB_ID", value=request.job_id),
                            run_v2.EnvVar(name="EDL_PATH", value=request.edl_gcs_path),
                            run_v2.EnvVar(name="GCS_BUCKET", value=self.config.bucket_name),
                            run_v2.EnvVar(
                                name="USE_GPU",
                                value="true" if request.use_gpu else "false",
                            ),
                        ],
                    )
                ],
            ),
        )

    def execute_render_job(self, request: JobExecutionRequest) -> JobExecution | None:
        """Submit the renderer job without waiting for it to finish.

        Returns None when the job could not be dispatched; callers treat that
        as a degraded result rather than a failure.
        """
        if self.config.execution_mode == "local":
            logger.info(
                f"[{request.job_id}] Render execution mode is local; skipping Cloud Run dispatch"
            )
            return JobExecution(
                execution_name=f"local-{request.job_id}",
                job_name="local",
                status="PENDING",
            )

        self._ensure_initialized()
        if not self._jobs_client:
            logger.error(f"[{request.job_id}] Cloud Run client not available")
            return None

        try:
            run_request = self.build_run_request(request)
            operation = self._jobs_client.run_job(request=run_request)
            metadata = getattr(operation, "metadata", None)
            execution_name = str(getattr(metadata, "name", "") or "")
            create_time = getattr(metadata, "create_time", None)

            return JobExecution(
                execution_name=execution_name or f"{self.config.renderer_job_name}-{request.job_id}",
                job_name=self.config.renderer_job_name,
                status="dispatched",
                create_time=create_time.isoformat() if create_time else None,
            )

        except Exception as e:
            logger.error(f"[{request.job_id}] Failed to execute Cloud Run job: {e}")
            return None
