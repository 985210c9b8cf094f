from __future__ import annotations

import threading

import pytest

from models.edl_models import Scene, Script
from operators.asset_operator import AssetProviders
from utils.cloud_run_jobs import JobExecution
from utils.image_provider import ImageResult
from utils.pexels_provider import FootageMatch, FootageNotFoundError
from utils.speech_provider import SpeechResult


class FakeStore:
    def __init__(self, bucket_name: str = "test-bucket"):
        self.bucket_name = bucket_name
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self._lock = threading.Lock()

    def uri(self, path: str) -> str:
        return f"gs://{self.bucket_name}/{path}"

    def put(self, path: str, data, content_type: str) -> str:
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        with self._lock:
            self.objects[path] = payload
            self.content_types[path] = content_type
        return self.uri(path)

    def get(self, path: str):
        return self.objects.get(path)

    def exists(self, path: str) -> bool:
        return path in self.objects

    def updated_at(self, path: str):
        return "2026-01-01T00:00:00+00:00" if path in self.objects else None


class FakeImages:
    def __init__(self, fail_prompts: set[str] | None = None):
        self.fail_prompts = fail_prompts or set()
        self.prompts: list[str] = []

    def generate(self, prompt: str) -> ImageResult:
        self.prompts.append(prompt)
        if prompt in self.fail_prompts:
            raise RuntimeError("quota exceeded")
        return ImageResult(image_bytes=b"png", content_type="image/png", model="fake", prompt=prompt)


class FakeSpeech:
    def __init__(self, fail_texts: set[str] | None = None, duration: float | None = None):
        self.fail_texts = fail_texts or set()
        self.duration = duration
        self.calls: list[tuple[str, object]] = []

    def synthesize(self, text: str, voice=None) -> SpeechResult:
        self.calls.append((text, voice))
        if text in self.fail_texts:
            raise RuntimeError("tts unavailable")
        return SpeechResult(audio_bytes=b"mp3", duration=self.duration)


class FakeFootage:
    def __init__(self, fail_queries: set[str] | None = None):
        self.fail_queries = fail_queries or set()
        self.searches: list[tuple[str, float]] = []

    def find(self, query: str, min_duration: float = 5) -> FootageMatch:
        self.searches.append((query, min_duration))
        if query in self.fail_queries:
            raise FootageNotFoundError(f"No stock videos found for query: {query}")
        return FootageMatch(id="1", url=f"https://videos.example.com/{len(query)}.mp4", duration=20)

    def download(self, url: str) -> bytes:
        return b"mp4"


class FakeDispatcher:
    def __init__(self, execution: JobExecution | None = None, error: Exception | None = None):
        self.execution = execution
        self.error = error
        self.requests = []

    def execute_render_job(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return self.execution


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def providers(store) -> AssetProviders:
    return AssetProviders(
        images=FakeImages(),
        speech=FakeSpeech(),
        footage=FakeFootage(),
        store=store,
    )


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher(
        JobExecution(execution_name="video-renderer-abc12", job_name="video-renderer", status="dispatched")
    )


@pytest.fixture
def script() -> Script:
    """Three scenes: an image scene, a footage scene and another image scene."""
    return Script(
        title="Volcanoes",
        description="How volcanoes work",
        scenes=[
            Scene(
                id="scene_1",
                duration=8,
                narration="Deep beneath the surface magma gathers",
                visual_type="image",
                image_prompt="magma chamber cross-section",
                search_query="magma",
            ),
            Scene(
                id="scene_2",
                duration=6,
                narration="Pressure builds until the mountain erupts",
                visual_type="video",
                search_query="volcano eruption",
            ),
            Scene(
                id="scene_3",
                duration=5,
                narration="Lava cools into new land",
                visual_type="image",
                image_prompt="cooling lava field at dusk",
            ),
        ],
    )
