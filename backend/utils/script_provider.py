from __future__ import annotations

import json
import logging
import re
from typing import Any

from openai import OpenAI
from pydantic import ValidationError

from models.edl_models import Script


logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_SCRIPT_MODEL = "google/gemini-2.5-pro"

SCRIPT_PROMPT = """Create a detailed video script for an educational video about "{topic}".
Target duration: {target_duration} seconds.

Return a JSON object with the following structure:
{{
  "title": "Video title",
  "description": "Brief description",
  "scenes": [
    {{
      "id": "scene_1",
      "duration": 10,
      "narration": "Text to be spoken",
      "visualDescription": "Description of what should be shown",
      "visualType": "image" | "video",
      "searchQuery": "Search query for stock footage (if visualType is video)",
      "imagePrompt": "Detailed prompt for image generation (if visualType is image)",
      "effects": {{
        "kenBurns": {{
          "startZoom": 1.0,
          "endZoom": 1.2,
          "direction": "in" | "out" | "left" | "right"
        }}
      }}
    }}
  ]
}}

Create 8-12 scenes that together form a cohesive educational narrative.
Alternate between image and video visual types for variety.
Make narrations clear and educational.
Ensure image prompts are detailed and suitable for AI generation."""

_FENCED_JSON = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")
_BARE_OBJECT = re.compile(r"\{[\s\S]*\}")


class ScriptGenerationError(Exception):
    pass


def extract_json_object(text: str) -> dict[str, Any]:
    """Pull the first JSON object out of a model reply, fenced or bare."""
    if not text or not text.strip():
        raise ScriptGenerationError("Script model returned an empty response")

    candidates = [text.strip()]
    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    bare = _BARE_OBJECT.search(text)
    if bare:
        candidates.append(bare.group(0))

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise ScriptGenerationError("Failed to parse script response as JSON")


def parse_script(text: str) -> Script:
    payload = extract_json_object(text)
    try:
        script = Script.model_validate(payload)
    except ValidationError as exc:
        raise ScriptGenerationError(f"Script response has an invalid shape: {exc}") from exc
    if not script.scenes:
        raise ScriptGenerationError("Script response contained no scenes")
    return script


class ScriptProvider:
    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        client: OpenAI | None = None,
    ):
        self.api_key = api_key
        self.model = model or DEFAULT_SCRIPT_MODEL
        self._client = client

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not self.api_key:
                raise ScriptGenerationError("OPENROUTER_API_KEY is not set")
            self._client = OpenAI(base_url=OPENROUTER_BASE_URL, api_key=self.api_key)
        return self._client

    def generate(self, topic: str, target_duration: int) -> Script:
        prompt = SCRIPT_PROMPT.format(topic=topic, target_duration=target_duration)
        try:
            response = self._get_client().chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                response_format={"type": "json_object"},
            )
        except ScriptGenerationError:
            raise
        except Exception as exc:
            logger.error(f"Script generation request failed: {exc}")
            raise ScriptGenerationError(f"Script generation request failed: {exc}") from exc

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        return parse_script(content or "")
