from __future__ import annotations

import logging
import time
from dataclasses import dataclass

_NAME_PREFIX = "kuntur_security_"


@dataclass(frozen=True, slots=True)
class VideoFile:
    uri: str
    name: str


def derive_video_name(uri: str) -> str:
    segment = (uri or "").rstrip().split("/")[-1]
    if not segment:
        return f"{_NAME_PREFIX}{int(time.time() * 1000)}.mp4"
    if "." not in segment:
        return f"{_NAME_PREFIX}{segment}.mp4"
    return segment


class VideoRegistry:
    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("alertserver.registry")
        self._videos: list[VideoFile] = []

    def __len__(self) -> int:
        return len(self._videos)

    @property
    def videos(self) -> list[VideoFile]:
        return list(self._videos)

    def add(self, uri: str) -> VideoFile:
        video = VideoFile(uri=uri, name=derive_video_name(uri))
        self._videos.append(video)
        self._logger.debug("Video added: %s (uri=%s); total=%d", video.name, uri, len(self._videos))
        return video

    def remove(self, video: VideoFile) -> bool:
        try:
            self._videos.remove(video)
        except ValueError:
            self._logger.debug("Video not registered: %s", video.name)
            return False
        self._logger.debug("Video removed: %s; remaining=%d", video.name, len(self._videos))
        return True

    def clear(self) -> None:
        self._videos.clear()
        self._logger.debug("All videos removed")
