from functools import lru_cache

from fastapi import Depends

from config import AppConfig, get_config
from operators.asset_operator import AssetProviders
from utils.cloud_run_jobs import CloudRunConfig, CloudRunJobsClient
from utils.gcs_utils import GCSObjectStore
from utils.image_provider import ImageProvider
from utils.pexels_provider import PexelsProvider
from utils.script_provider import ScriptProvider
from utils.speech_provider import SpeechProvider


def get_app_config() -> AppConfig:
    return get_config()


@lru_cache(maxsize=1)
def _object_store(bucket_name: str, credentials_raw: str) -> GCSObjectStore:
    return GCSObjectStore(bucket_name, credentials_raw=credentials_raw)


def get_object_store(config: AppConfig = Depends(get_app_config)) -> GCSObjectStore:
    return _object_store(config.bucket_name, config.gcp_credentials)


def get_script_provider(config: AppConfig = Depends(get_app_config)) -> ScriptProvider:
    return ScriptProvider(api_key=config.openrouter_api_key, model=config.script_model)


def get_asset_providers(
    config: AppConfig = Depends(get_app_config),
    store: GCSObjectStore = Depends(get_object_store),
) -> AssetProviders:
    return AssetProviders(
        images=ImageProvider(api_key=config.openrouter_api_key, model=config.image_model),
        speech=SpeechProvider(
            api_key=config.google_api_key, default_voice_name=config.tts_voice_name
        ),
        footage=PexelsProvider(api_key=config.pexels_api_key),
        store=store,
    )


@lru_cache(maxsize=1)
def _dispatcher(config: AppConfig) -> CloudRunJobsClient:
    return CloudRunJobsClient(CloudRunConfig.from_app_config(config))


def get_dispatcher(config: AppConfig = Depends(get_app_config)) -> CloudRunJobsClient:
    return _dispatcher(config)
