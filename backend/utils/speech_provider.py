from __future__ import annotations

import base64
import json
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any

from models.api_models import VoiceConfig


TTS_API_URL = "https://texttospeech.googleapis.com/v1/text:synthesize"
DEFAULT_VOICE_NAME = "en-US-Neural2-D"


@dataclass
class SpeechResult:
    audio_bytes: bytes
    content_type: str = "audio/mpeg"
    duration: float | None = None


class SpeechProvider:
    """Google Cloud Text-to-Speech over its REST endpoint (MP3 output).

    The endpoint does not report audio length, so `duration` is left unset and
    callers estimate it from the text.
    """

    def __init__(self, api_key: str, default_voice_name: str = DEFAULT_VOICE_NAME):
        self.api_key = api_key.strip().strip('"').strip("'")
        self.default_voice_name = default_voice_name

    def build_request(self, text: str, voice: VoiceConfig | None = None) -> dict[str, Any]:
        voice = voice or VoiceConfig()
        return {
            "input": {"text": text},
            "voice": {
                "languageCode": voice.language_code,
                "name": voice.name or self.default_voice_name,
                "ssmlGender": voice.ssml_gender,
            },
            "audioConfig": {
                "audioEncoding": "MP3",
                "speakingRate": voice.speaking_rate,
                "pitch": voice.pitch,
            },
        }

    def synthesize(self, text: str, voice: VoiceConfig | None = None) -> SpeechResult:
        if not text.strip():
            raise ValueError("Narration text is required")

        response = self._request_json(self.build_request(text, voice))
        audio_content = response.get("audioContent")
        if not audio_content:
            raise RuntimeError("Text-to-Speech response did not include audio")
        return SpeechResult(audio_bytes=base64.b64decode(audio_content))

    def _request_json(self, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.api_key:
            raise RuntimeError("GOOGLE_API_KEY is not set")

        request = urllib.request.Request(
            url=TTS_API_URL,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
        )
        request.add_header("x-goog-api-key", self.api_key)
        request.add_header("Content-Type", "application/json")

        try:
            with urllib.request.urlopen(request, timeout=120) as response:
                body = response.read().decode("utf-8")
                parsed = json.loads(body)
                if isinstance(parsed, dict):
                    return parsed
                raise RuntimeError("Unexpected non-object response from Text-to-Speech API")
        except urllib.error.HTTPError as exc:
            details = ""
            try:
                details = exc.read().decode("utf-8", errors="ignore")
            except Exception:
                details = ""
            raise RuntimeError(
                f"Text-to-Speech request failed ({exc.code}): {details[:500]}"
            ) from exc
