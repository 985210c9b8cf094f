from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import requests


logger = logging.getLogger(__name__)

PEXELS_SEARCH_URL = "https://api.pexels.com/videos/search"
SEARCH_PAGE_SIZE = 10


class FootageNotFoundError(Exception):
    pass


@dataclass
class VideoEncode:
    quality: str | None
    link: str
    width: int | None = None
    height: int | None = None


@dataclass
class FootageVideo:
    id: str
    duration: float
    encodes: list[VideoEncode] = field(default_factory=list)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> FootageVideo:
        encodes = [
            VideoEncode(
                quality=item.get("quality"),
                link=str(item.get("link") or ""),
                width=item.get("width"),
                height=item.get("height"),
            )
            for item in payload.get("video_files") or []
            if item.get("link")
        ]
        return cls(
            id=str(payload.get("id")),
            duration=float(payload.get("duration") or 0),
            encodes=encodes,
        )


@dataclass
class FootageMatch:
    id: str
    url: str
    duration: float
    width: int | None = None
    height: int | None = None


def select_footage(videos: list[FootageVideo], min_duration: float, query: str = "") -> FootageMatch:
    """Pick the first video long enough, else the first video; prefer its hd encode.

    The duration floor is advisory: only an empty result list is a failure.
    """
    playable = [video for video in videos if video.encodes]
    if not playable:
        raise FootageNotFoundError(f"No stock videos found for query: {query}")

    long_enough = [video for video in playable if video.duration >= min_duration]
    video = long_enough[0] if long_enough else playable[0]
    encode = next((e for e in video.encodes if e.quality == "hd"), video.encodes[0])
    return FootageMatch(
        id=video.id,
        url=encode.link,
        duration=video.duration,
        width=encode.width,
        height=encode.height,
    )


class PexelsProvider:
    def __init__(
        self,
        api_key: str,
        session: requests.Session | None = None,
        timeout_seconds: float = 30,
    ):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.timeout_seconds = timeout_seconds

    def search(self, query: str, min_duration: float = 5) -> list[FootageVideo]:
        if not self.api_key:
            raise FootageNotFoundError("PEXELS_API_KEY is not set")
        if not query or not query.strip():
            raise FootageNotFoundError("Stock footage search needs a query")

        response = self.session.get(
            PEXELS_SEARCH_URL,
            headers={"Authorization": self.api_key},
            params={
                "query": query,
                "per_page": SEARCH_PAGE_SIZE,
                "orientation": "landscape",
                "size": "medium",
            },
            timeout=self.timeout_seconds,
        )
        response.raise_for_status()
        videos = [FootageVideo.from_api(item) for item in response.json().get("videos") or []]
        logger.debug(f"Pexels returned {len(videos)} videos for '{query}' (min {min_duration}s)")
        return videos

    def find(self, query: str, min_duration: float = 5) -> FootageMatch:
        return select_footage(self.search(query, min_duration), min_duration, query)

    def download(self, url: str) -> bytes:
        response = self.session.get(url, timeout=180)
        response.raise_for_status()
        return response.content
