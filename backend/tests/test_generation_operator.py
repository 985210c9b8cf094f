import json

import pytest

from config import AppConfig
from conftest import FakeDispatcher, FakeFootage, FakeImages
from models.api_models import GenerateRequest, GenerationOptions
from operators.generation_operator import TopicRequiredError, orchestrate_video_generation


class FakeScriptProvider:
    def __init__(self, script):
        self.script = script
        self.calls = []

    def generate(self, topic, target_duration):
        self.calls.append((topic, target_duration))
        return self.script


@pytest.fixture
def config():
    return AppConfig(asset_workers=4, default_target_duration=90)


class TestOrchestrateVideoGeneration:
    def test_full_run(self, script, providers, dispatcher, config, store):
        script_provider = FakeScriptProvider(script)

        result = orchestrate_video_generation(
            GenerateRequest(topic="  volcanoes  ", job_id="job-1"),
            script_provider=script_provider,
            providers=providers,
            dispatcher=dispatcher,
            config=config,
        )

        assert script_provider.calls == [("volcanoes", 90)]
        assert result.job_id == "job-1"
        assert result.status == "processing"
        assert result.edl_path == "gs://test-bucket/jobs/job-1/edl.json"
        assert result.asset_count == 6
        assert result.dropped_scenes == []
        assert result.degraded is False
        assert result.render_execution.execution_name == "video-renderer-abc12"

        raw = store.objects["jobs/job-1/edl.json"].decode("utf-8")
        assert raw.startswith('{\n  "version": "1.0.0"')
        document = json.loads(raw)
        assert len(document["timeline"]["tracks"][0]["clips"]) == 3
        assert document["timeline"]["duration"] == pytest.approx(result.estimated_duration)
        assert dispatcher.requests[0].edl_gcs_path == result.edl_path

    def test_request_target_duration_wins(self, script, providers, dispatcher, config):
        script_provider = FakeScriptProvider(script)

        orchestrate_video_generation(
            GenerateRequest(topic="volcanoes", target_duration=45),
            script_provider=script_provider,
            providers=providers,
            dispatcher=dispatcher,
            config=config,
        )

        assert script_provider.calls == [("volcanoes", 45)]

    def test_dropped_scenes_are_reported(self, script, providers, dispatcher, config):
        providers.footage = FakeFootage(fail_queries={"volcano eruption"})

        result = orchestrate_video_generation(
            GenerateRequest(topic="volcanoes", job_id="job-2"),
            script_provider=FakeScriptProvider(script),
            providers=providers,
            dispatcher=dispatcher,
            config=config,
        )

        assert result.dropped_scenes == ["scene_2"]
        assert result.asset_count == 5
        # narration estimates: 6 words and 5 words at 150 wpm
        assert result.estimated_duration == pytest.approx(2.4 + 2.0)

    def test_image_fallback_keeps_scene(self, script, providers, dispatcher, config):
        providers.images = FakeImages(fail_prompts={"magma chamber cross-section"})

        result = orchestrate_video_generation(
            GenerateRequest(topic="volcanoes"),
            script_provider=FakeScriptProvider(script),
            providers=providers,
            dispatcher=dispatcher,
            config=config,
        )

        assert result.dropped_scenes == []

    def test_degraded_when_dispatch_fails(self, script, providers, config, store):
        result = orchestrate_video_generation(
            GenerateRequest(topic="volcanoes", job_id="job-3"),
            script_provider=FakeScriptProvider(script),
            providers=providers,
            dispatcher=FakeDispatcher(None),
            config=config,
        )

        assert result.degraded is True
        assert result.render_execution is None
        assert store.exists("jobs/job-3/edl.json")

    def test_use_gpu_option_reaches_dispatch(self, script, providers, dispatcher, config):
        orchestrate_video_generation(
            GenerateRequest(topic="volcanoes", options=GenerationOptions(use_gpu=False)),
            script_provider=FakeScriptProvider(script),
            providers=providers,
            dispatcher=dispatcher,
            config=config,
        )

        assert dispatcher.requests[0].use_gpu is False

    @pytest.mark.parametrize("topic", [None, "", "   "])
    def test_topic_required(self, topic, script, providers, dispatcher, config):
        script_provider = FakeScriptProvider(script)

        with pytest.raises(TopicRequiredError):
            orchestrate_video_generation(
                GenerateRequest(topic=topic),
                script_provider=script_provider,
                providers=providers,
                dispatcher=dispatcher,
                config=config,
            )

        assert script_provider.calls == []
