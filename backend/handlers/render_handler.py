import logging

from fastapi import APIRouter, Depends, HTTPException

from dependencies.services import get_dispatcher, get_object_store
from models.api_models import JobStatusResponse, RenderRequest, RenderResponse
from operators.asset_operator import ObjectStore
from operators.edl_operator import EDLValidationError
from operators.render_operator import (
    RenderDispatcher,
    RenderJobNotFoundError,
    get_job_status,
    submit_edl,
)


router = APIRouter(tags=["render"])
logger = logging.getLogger(__name__)


@router.post("/render", response_model=RenderResponse, status_code=202)
def create_render(
    request: RenderRequest,
    store: ObjectStore = Depends(get_object_store),
    dispatcher: RenderDispatcher = Depends(get_dispatcher),
):
    try:
        return submit_edl(request.edl, store=store, dispatcher=dispatcher)
    except EDLValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception(f"Error starting render: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/jobs/{job_id}", response_model=JobStatusResponse, response_model_exclude_none=True)
def get_job(
    job_id: str,
    store: ObjectStore = Depends(get_object_store),
):
    try:
        return get_job_status(store, job_id)
    except RenderJobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except Exception as e:
        logger.exception(f"Error getting job status: {e}")
        raise HTTPException(status_code=500, detail=str(e))
