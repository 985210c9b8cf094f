from datetime import datetime, timezone

import pytest

from models.api_models import GenerationOptions
from models.edl_models import Asset, AssetType, KenBurnsHint, SceneEffects
from operators.edl_operator import (
    DISSOLVE_DURATION,
    EDLValidationError,
    build_edl,
    find_dropped_scenes,
    validate_edl,
)


def _assets(script, narration_durations=None, skip=()):
    narration_durations = narration_durations or {}
    assets = {}
    for scene in script.scenes:
        visual_id = f"visual_{scene.id}"
        audio_id = f"audio_{scene.id}"
        if visual_id not in skip:
            asset_type = (
                AssetType.GENERATED_IMAGE if scene.visual_type == "image" else AssetType.PEXELS_VIDEO
            )
            assets[visual_id] = Asset(id=visual_id, type=asset_type, source=f"gs://b/{visual_id}")
        if audio_id not in skip:
            assets[audio_id] = Asset(
                id=audio_id,
                type=AssetType.GENERATED_AUDIO,
                source=f"gs://b/{audio_id}.mp3",
                duration=narration_durations.get(scene.id),
            )
    return assets


class TestBuildEDL:
    def test_clips_are_contiguous_and_sum_to_duration(self, script):
        edl = build_edl(script, _assets(script))

        video = edl.video_track
        audio = edl.audio_track
        assert len(video.clips) == len(audio.clips) == 3
        assert [clip.start_time for clip in video.clips] == [0, 8, 14]
        assert edl.timeline.duration == pytest.approx(19)
        for video_clip, audio_clip in zip(video.clips, audio.clips):
            assert video_clip.start_time == audio_clip.start_time
            assert video_clip.duration == audio_clip.duration

    def test_narration_duration_sets_clip_length(self, script):
        edl = build_edl(script, _assets(script, {"scene_1": 4.5, "scene_2": 3.0}))

        assert [clip.duration for clip in edl.video_track.clips] == [4.5, 3.0, 5]
        assert edl.timeline.duration == pytest.approx(12.5)

    def test_scene_missing_visual_is_dropped(self, script):
        assets = _assets(script, skip={"visual_scene_2"})

        edl = build_edl(script, assets)

        assert [clip.id for clip in edl.video_track.clips] == ["clip_scene_1", "clip_scene_3"]
        assert [clip.id for clip in edl.audio_track.clips] == [
            "audio_clip_scene_1",
            "audio_clip_scene_3",
        ]
        assert edl.video_track.clips[1].start_time == 8
        assert edl.timeline.duration == pytest.approx(13)
        assert find_dropped_scenes(script, assets) == ["scene_2"]

    def test_scene_missing_narration_is_dropped(self, script):
        assets = _assets(script, skip={"audio_scene_1"})

        edl = build_edl(script, assets)

        assert edl.video_track.clips[0].id == "clip_scene_2"
        assert edl.video_track.clips[0].start_time == 0
        assert edl.video_track.clips[0].transitions is None

    def test_dissolve_on_every_clip_after_the_first(self, script):
        edl = build_edl(script, _assets(script))

        clips = edl.video_track.clips
        assert clips[0].transitions is None
        for clip in clips[1:]:
            assert clip.transitions.in_.type == "dissolve"
            assert clip.transitions.in_.duration == DISSOLVE_DURATION
            assert clip.transitions.out is None

    def test_ken_burns_only_on_image_clips(self, script):
        script.scenes[1].effects = SceneEffects(ken_burns=KenBurnsHint(end_zoom=1.5))

        edl = build_edl(script, _assets(script))

        first, second, third = edl.video_track.clips
        assert first.effects[0].type == "ken-burns"
        assert first.effects[0].params == {
            "startZoom": 1.0,
            "endZoom": 1.15,
            "startX": 0.0,
            "startY": 0.0,
            "endX": 0.0,
            "endY": 0.0,
            "easing": "ease-in-out",
        }
        assert second.effects == []
        assert third.effects[0].type == "ken-burns"

    def test_scene_ken_burns_hint_is_used(self, script):
        script.scenes[0].effects = SceneEffects(
            ken_burns=KenBurnsHint(start_zoom=1.2, end_zoom=1.0, end_x=0.1, easing="ease-out")
        )

        edl = build_edl(script, _assets(script))

        params = edl.video_track.clips[0].effects[0].params
        assert params["startZoom"] == 1.2
        assert params["endZoom"] == 1.0
        assert params["endX"] == 0.1
        assert params["easing"] == "ease-out"

    def test_unknown_easing_falls_back(self, script):
        script.scenes[0].effects = SceneEffects(ken_burns=KenBurnsHint(easing="bounce"))

        edl = build_edl(script, _assets(script))

        assert edl.video_track.clips[0].effects[0].params["easing"] == "ease-in-out"

    def test_default_settings(self, script):
        created = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

        document = build_edl(script, _assets(script), created_at=created).to_document()

        assert document["version"] == "1.0.0"
        assert document["metadata"]["title"] == "Volcanoes"
        assert document["metadata"]["createdAt"] == "2026-03-01T12:00:00Z"
        assert document["metadata"]["outputSettings"] == {
            "width": 1920,
            "height": 1080,
            "fps": 30,
            "format": "mp4",
            "codec": "h264",
            "bitrate": "8M",
            "audioCodec": "aac",
            "audioBitrate": "192K",
        }
        assert document["renderSettings"] == {"useGpu": True, "preset": "medium", "crf": 23}
        assert [track["id"] for track in document["timeline"]["tracks"]] == [
            "video-main",
            "audio-narration",
        ]

    def test_options_override_settings(self, script):
        options = GenerationOptions(width=1280, height=720, use_gpu=False, crf=28, preset="fast")

        edl = build_edl(script, _assets(script), options=options)

        assert edl.metadata.output_settings.width == 1280
        assert edl.metadata.output_settings.height == 720
        assert edl.metadata.output_settings.fps == 30
        assert edl.render_settings.use_gpu is False
        assert edl.render_settings.crf == 28
        assert edl.render_settings.preset == "fast"

    def test_no_assets_gives_empty_timeline(self, script):
        edl = build_edl(script, {})

        assert edl.video_track.clips == []
        assert edl.timeline.duration == 0


class TestValidateEDL:
    def _document(self, script):
        return build_edl(script, _assets(script)).to_document()

    def test_accepts_built_document(self, script):
        edl = validate_edl(self._document(script))

        assert len(edl.video_track.clips) == 3

    @pytest.mark.parametrize("document", [None, [], {}, {"timeline": None}, "edl"])
    def test_rejects_missing_timeline(self, document):
        with pytest.raises(EDLValidationError, match="Valid EDL is required"):
            validate_edl(document)

    def test_rejects_malformed_clip(self, script):
        document = self._document(script)
        document["timeline"]["tracks"][0]["clips"][0]["duration"] = -1

        with pytest.raises(EDLValidationError, match="Malformed EDL"):
            validate_edl(document)

    def test_rejects_unknown_asset(self, script):
        document = self._document(script)
        document["timeline"]["tracks"][1]["clips"][0]["assetId"] = "audio_missing"

        with pytest.raises(EDLValidationError, match="unknown asset audio_missing"):
            validate_edl(document)

    def test_rejects_missing_video_track(self, script):
        document = self._document(script)
        document["timeline"]["tracks"] = document["timeline"]["tracks"][1:]

        with pytest.raises(EDLValidationError, match="no video track"):
            validate_edl(document)

    def test_rejects_duplicate_track_type(self, script):
        document = self._document(script)
        document["timeline"]["tracks"].append(dict(document["timeline"]["tracks"][0], id="video-2"))

        with pytest.raises(EDLValidationError, match="more than one video track"):
            validate_edl(document)

    def test_rejects_video_gap(self, script):
        document = self._document(script)
        document["timeline"]["tracks"][0]["clips"][1]["startTime"] = 9

        with pytest.raises(EDLValidationError, match="contiguous"):
            validate_edl(document)

    def test_allows_audio_gap(self, script):
        document = self._document(script)
        document["timeline"]["tracks"][1]["clips"][1]["startTime"] = 9

        edl = validate_edl(document)

        assert edl.audio_track.clips[1].start_time == 9

    def test_duration_mismatch_is_tolerated(self, script):
        document = self._document(script)
        document["timeline"]["duration"] = 100

        assert validate_edl(document).timeline.duration == 100
