import logging

from fastapi import APIRouter, Depends, HTTPException

from config import AppConfig
from dependencies.services import (
    get_app_config,
    get_asset_providers,
    get_dispatcher,
    get_script_provider,
)
from models.api_models import GenerateRequest, GenerationResult
from operators.asset_operator import AssetProviders
from operators.generation_operator import (
    TopicRequiredError,
    orchestrate_video_generation,
)
from operators.render_operator import RenderDispatcher
from utils.script_provider import ScriptGenerationError, ScriptProvider


router = APIRouter(tags=["generation"])
logger = logging.getLogger(__name__)


@router.post("/generate", response_model=GenerationResult, status_code=202)
def generate_video(
    request: GenerateRequest,
    config: AppConfig = Depends(get_app_config),
    script_provider: ScriptProvider = Depends(get_script_provider),
    providers: AssetProviders = Depends(get_asset_providers),
    dispatcher: RenderDispatcher = Depends(get_dispatcher),
):
    try:
        return orchestrate_video_generation(
            request,
            script_provider=script_provider,
            providers=providers,
            dispatcher=dispatcher,
            config=config,
        )
    except TopicRequiredError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ScriptGenerationError as e:
        logger.error(f"Script generation failed: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to generate script: {e}")
    except Exception as e:
        logger.exception(f"Error generating video: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to generate video: {e}")
