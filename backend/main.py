import logging
import os
from pathlib import Path

from dotenv import load_dotenv

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from config import get_config
from handlers.generation_handler import router as generation_router
from handlers.health_handler import router as health_router
from handlers.render_handler import router as render_router

ROOT_DIR = Path(__file__).resolve().parents[1]
load_dotenv(ROOT_DIR / ".env")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def _attach_file_handler(
    logger_name: str,
    log_file_path: Path,
    level_name: str | None = None,
) -> None:
    logger_level = (level_name or LOG_LEVEL).upper()
    logger_level_value = getattr(logging, logger_level, logging.INFO)

    log_file_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
    file_handler.setLevel(logger_level_value)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    )

    target_logger = logging.getLogger(logger_name)
    if not any(
        isinstance(handler, logging.FileHandler)
        and getattr(handler, "baseFilename", None) == str(log_file_path)
        for handler in target_logger.handlers
    ):
        target_logger.addHandler(file_handler)
    target_logger.setLevel(logger_level_value)


ORCHESTRATION_LOG_FILE = os.getenv("ORCHESTRATION_LOG_FILE", "").strip()
if ORCHESTRATION_LOG_FILE:
    orchestration_log_path = Path(ORCHESTRATION_LOG_FILE)
    if not orchestration_log_path.is_absolute():
        orchestration_log_path = ROOT_DIR / orchestration_log_path
    for name in (
        "operators.generation_operator",
        "operators.asset_operator",
        "operators.edl_operator",
        "operators.render_operator",
        "utils.cloud_run_jobs",
    ):
        _attach_file_handler(name, orchestration_log_path)

app = FastAPI(title="Hybrid Video Orchestrator")


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Rejected {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


app.include_router(health_router)
app.include_router(generation_router)
app.include_router(render_router)

if __name__ == "__main__":
    config = get_config()
    logger.info(
        f"Project: {config.project_id or '-'}, Location: {config.location}, "
        f"Storage Bucket: {config.bucket_name}"
    )
    uvicorn.run(app, host="0.0.0.0", port=config.port)
