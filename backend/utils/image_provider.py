from __future__ import annotations

import base64
import logging
import urllib.request
from dataclasses import dataclass
from typing import Any

from openai import OpenAI


logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_IMAGE_MODEL = "google/gemini-2.5-flash-image-preview"
DEFAULT_ASPECT_RATIO = "16:9"


@dataclass
class ImageResult:
    image_bytes: bytes
    content_type: str
    model: str
    prompt: str


class ImageProvider:
    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        client: OpenAI | None = None,
        aspect_ratio: str = DEFAULT_ASPECT_RATIO,
    ):
        self.api_key = api_key
        self.model = model or DEFAULT_IMAGE_MODEL
        self.aspect_ratio = aspect_ratio
        self._client = client

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not self.api_key:
                raise RuntimeError("OPENROUTER_API_KEY is not set")
            self._client = OpenAI(base_url=OPENROUTER_BASE_URL, api_key=self.api_key)
        return self._client

    def generate(self, prompt: str) -> ImageResult:
        if not prompt.strip():
            raise ValueError("Prompt is required")

        response = self._get_client().chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": [{"type": "text", "text": prompt.strip()}]}],
            modalities=["image", "text"],
            stream=False,
            extra_body={"image_config": {"aspect_ratio": self.aspect_ratio}},
        )

        image_url = _first_image_url(response)
        if not image_url:
            raise RuntimeError("Image model response did not include an image")

        image_bytes, content_type = _decode_image(image_url)
        logger.debug(f"Image model {self.model} returned {len(image_bytes)} bytes ({content_type})")
        return ImageResult(
            image_bytes=image_bytes,
            content_type=content_type,
            model=self.model,
            prompt=prompt.strip(),
        )


def _first_image_url(response: Any) -> str | None:
    """First image URL in a completion, whether or not the SDK parsed `images`."""
    choices = getattr(response, "choices", None) or []
    images = getattr(choices[0].message, "images", None) if choices else None
    if images is None and hasattr(response, "model_dump"):
        raw_choices = response.model_dump().get("choices") or []
        if raw_choices:
            images = (raw_choices[0].get("message") or {}).get("images")

    for image in images or []:
        if not isinstance(image, dict):
            image = image.model_dump() if hasattr(image, "model_dump") else vars(image)
        image_url = image.get("image_url") or image.get("imageUrl") or {}
        if isinstance(image_url, dict):
            url = image_url.get("url")
        else:
            url = getattr(image_url, "url", None)
        url = url or image.get("url")
        if url:
            return str(url)
    return None


def _decode_image(image_url: str) -> tuple[bytes, str]:
    if image_url.startswith("data:"):
        header, _, data = image_url.partition(",")
        if not data:
            raise RuntimeError("Image response carried an empty data URL")
        content_type = header[5:].split(";", 1)[0] or "image/png"
        return base64.b64decode(data), content_type

    if image_url.startswith(("http://", "https://")):
        with urllib.request.urlopen(image_url, timeout=90) as response:
            content_type = response.headers.get("Content-Type", "image/png").split(";", 1)[0]
            return response.read(), content_type

    raise RuntimeError("Unsupported image payload format")
