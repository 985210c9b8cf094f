import threading

import pytest

from conftest import FakeFootage, FakeImages, FakeSpeech
from models.api_models import VoiceConfig
from models.edl_models import AssetType, Scene, Script
from operators.asset_operator import (
    AssetGenerationError,
    estimate_narration_duration,
    generate_assets,
    generate_image_asset,
    generate_narration_asset,
    plan_asset_slots,
)


class TestNarrationEstimate:
    def test_150_words_is_one_minute(self):
        assert estimate_narration_duration(" ".join(["word"] * 150)) == pytest.approx(60)

    def test_speaking_rate_shortens_estimate(self):
        assert estimate_narration_duration(" ".join(["word"] * 150), 2.0) == pytest.approx(30)

    def test_empty_text(self):
        assert estimate_narration_duration("") == 0


class TestNarrationAsset:
    def test_uses_estimate_without_provider_duration(self, providers, script):
        asset = generate_narration_asset("job-1", script.scenes[0], providers)

        assert asset.id == "audio_scene_1"
        assert asset.type == AssetType.GENERATED_AUDIO
        assert asset.source == "gs://test-bucket/jobs/job-1/assets/audio_scene_1.mp3"
        assert asset.duration == pytest.approx(6 / 150 * 60)
        assert providers.store.content_types["jobs/job-1/assets/audio_scene_1.mp3"] == "audio/mpeg"

    def test_provider_duration_wins(self, providers, script):
        providers.speech = FakeSpeech(duration=3.25)

        asset = generate_narration_asset("job-1", script.scenes[0], providers)

        assert asset.duration == 3.25

    def test_voice_is_passed_through(self, providers, script):
        voice = VoiceConfig(name="en-US-Neural2-D", speaking_rate=1.5)

        asset = generate_narration_asset("job-1", script.scenes[0], providers, voice)

        assert providers.speech.calls == [(script.scenes[0].narration, voice)]
        assert asset.duration == pytest.approx(6 / (150 * 1.5) * 60)

    def test_failure_raises_generation_error(self, providers, script):
        providers.speech = FakeSpeech(fail_texts={script.scenes[0].narration})

        with pytest.raises(AssetGenerationError) as exc_info:
            generate_narration_asset("job-1", script.scenes[0], providers)

        assert exc_info.value.asset_id == "audio_scene_1"


class TestImageAsset:
    def test_generated_image_is_stored(self, providers, script):
        asset = generate_image_asset("job-1", script.scenes[0], providers)

        assert asset.type == AssetType.GENERATED_IMAGE
        assert asset.prompt == "magma chamber cross-section"
        assert asset.source == "gs://test-bucket/jobs/job-1/assets/visual_scene_1.png"
        assert providers.footage.searches == []

    def test_falls_back_to_footage(self, providers, script):
        providers.images = FakeImages(fail_prompts={"magma chamber cross-section"})

        asset = generate_image_asset("job-1", script.scenes[0], providers)

        assert asset.id == "visual_scene_1"
        assert asset.type == AssetType.PEXELS_VIDEO
        assert asset.search_query == "magma"
        assert asset.source == "gs://test-bucket/jobs/job-1/assets/visual_scene_1.mp4"
        assert providers.footage.searches == [("magma", 8)]

    def test_fallback_uses_visual_description_without_query(self, providers):
        scene = Scene(
            id="scene_9",
            duration=4,
            narration="A quiet harbor",
            visual_type="image",
            visual_description="fishing boats at dawn",
            image_prompt="harbor",
        )
        providers.images = FakeImages(fail_prompts={"harbor"})

        generate_image_asset("job-1", scene, providers)

        assert providers.footage.searches == [("fishing boats at dawn", 4)]

    def test_failed_fallback_raises(self, providers, script):
        providers.images = FakeImages(fail_prompts={"magma chamber cross-section"})
        providers.footage = FakeFootage(fail_queries={"magma"})

        with pytest.raises(AssetGenerationError, match="stock footage fallback failed"):
            generate_image_asset("job-1", script.scenes[0], providers)


class TestPlanSlots:
    def test_one_slot_per_scene_role(self, providers, script):
        slots = plan_asset_slots("job-1", script, providers)

        assert [asset_id for asset_id, _ in slots] == [
            "visual_scene_1",
            "audio_scene_1",
            "visual_scene_2",
            "audio_scene_2",
            "visual_scene_3",
            "audio_scene_3",
        ]

    def test_slots_need_inputs(self, providers):
        script = Script(
            title="Sparse",
            scenes=[
                Scene(id="a", duration=3, narration="", visual_type="image", image_prompt="x"),
                Scene(id="b", duration=3, narration="hello", visual_type="video"),
                Scene(id="c", duration=3, narration="hi", visual_type="image"),
            ],
        )

        slots = plan_asset_slots("job-1", script, providers)

        assert [asset_id for asset_id, _ in slots] == ["visual_a", "audio_b", "audio_c"]


class TestGenerateAssets:
    def test_all_slots_resolve(self, providers, script):
        assets = generate_assets("job-1", script, providers, max_workers=4)

        assert list(assets) == [
            "visual_scene_1",
            "audio_scene_1",
            "visual_scene_2",
            "audio_scene_2",
            "visual_scene_3",
            "audio_scene_3",
        ]
        assert assets["visual_scene_2"].type == AssetType.PEXELS_VIDEO
        assert assets["visual_scene_2"].search_query == "volcano eruption"
        assert len(providers.store.objects) == 6

    def test_image_failure_with_footage_fallback(self, providers, script):
        providers.images = FakeImages(fail_prompts={"magma chamber cross-section"})

        assets = generate_assets("job-1", script, providers)

        assert assets["visual_scene_1"].type == AssetType.PEXELS_VIDEO
        assert assets["visual_scene_3"].type == AssetType.GENERATED_IMAGE

    def test_failed_slot_does_not_abort_siblings(self, providers, script):
        # scene_3 has no search query, so its fallback cannot succeed
        providers.images = FakeImages(fail_prompts={"cooling lava field at dusk"})
        providers.footage = FakeFootage(fail_queries={"volcano eruption"})

        assets = generate_assets("job-1", script, providers)

        assert "visual_scene_2" not in assets
        assert "visual_scene_3" not in assets
        assert set(assets) == {
            "visual_scene_1",
            "audio_scene_1",
            "audio_scene_2",
            "audio_scene_3",
        }

    def test_failed_narration_is_absent(self, providers, script):
        providers.speech = FakeSpeech(fail_texts={script.scenes[1].narration})

        assets = generate_assets("job-1", script, providers)

        assert "audio_scene_2" not in assets
        assert "visual_scene_2" in assets

    def test_empty_script(self, providers):
        assert generate_assets("job-1", Script(title="Empty"), providers) == {}

    def test_every_slot_runs_at_once_by_default(self, providers, script):
        # each provider call blocks until all six slots are in flight together
        barrier = threading.Barrier(6, timeout=5)

        class GatedImages(FakeImages):
            def generate(self, prompt):
                barrier.wait()
                return super().generate(prompt)

        class GatedSpeech(FakeSpeech):
            def synthesize(self, text, voice=None):
                barrier.wait()
                return super().synthesize(text, voice)

        class GatedFootage(FakeFootage):
            def find(self, query, min_duration=5):
                barrier.wait()
                return super().find(query, min_duration)

        providers.images = GatedImages()
        providers.speech = GatedSpeech()
        providers.footage = GatedFootage()

        assets = generate_assets("job-1", script, providers)

        assert len(assets) == 6
        assert not barrier.broken
        assert assets["visual_scene_1"].type == AssetType.GENERATED_IMAGE
