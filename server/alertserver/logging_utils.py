from __future__ import annotations

import logging


def setup_logging(level: str = "INFO") -> None:
    numeric = getattr(logging, (level or "INFO").strip().upper(), None)
    if not isinstance(numeric, int):
        raise ValueError(f"Invalid log level: {level}")
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Frame-level chatter from the websocket library drowns out the state machine.
    logging.getLogger("websockets").setLevel(max(numeric, logging.WARNING))
    logging.getLogger("urllib3").setLevel(max(numeric, logging.WARNING))


def preview(text: str, limit: int = 50) -> str:
    """Shorten transcript text for log lines."""
    text = text or ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
