from __future__ import annotations

import logging

from alertserver.logging_utils import preview


class TranscriptBuffer:
    """Latest recognized text.

    Final results accumulate since the last reset; a partial result shows the
    in-progress hypothesis on top of the accumulated text.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("alertserver.transcript")
        self._committed = ""
        self._partial = ""

    @property
    def text(self) -> str:
        if not self._partial:
            return self._committed
        if not self._committed:
            return self._partial
        return f"{self._committed} {self._partial}"

    def is_blank(self) -> bool:
        return not self.text.strip()

    def snapshot(self) -> str:
        return self.text

    def on_partial(self, text: str) -> None:
        self._partial = (text or "").strip()
        self._logger.debug("Partial result: %s", preview(self._partial))

    def on_final(self, text: str) -> None:
        hypothesis = (text or "").strip()
        self._partial = ""
        if not hypothesis:
            return
        self._committed = hypothesis if not self._committed.strip() else f"{self._committed} {hypothesis}"
        self._logger.info("Final result: %s", preview(self._committed))

    def reset(self) -> None:
        self._committed = ""
        self._partial = ""
        self._logger.info("Transcript reset")
