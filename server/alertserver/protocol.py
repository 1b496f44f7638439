from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

THREAT_CONFIRMED = "SI"


@dataclass(frozen=True, slots=True)
class ThreatVerdict:
    keyword: str
    threat_type: str
    is_threat: str
    justification: str

    @property
    def confirmed(self) -> bool:
        return self.is_threat == THREAT_CONFIRMED

    @classmethod
    def from_json(cls, obj: Any) -> "ThreatVerdict":
        if not isinstance(obj, dict):
            raise ValueError("verdict payload is not an object")
        try:
            return cls(
                keyword=str(obj["keyword"]),
                threat_type=str(obj["threat_type"]),
                is_threat=str(obj["is_threat"]),
                justification=str(obj["justification"]),
            )
        except KeyError as e:
            raise ValueError(f"verdict payload missing {e.args[0]!r}") from e

    def to_json(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class AlarmNotification:
    location: str
    keyword: str
    threat_type: str
    justification: str
    timestamp: str
    videoUrl: str

    @classmethod
    def build(cls, verdict: ThreatVerdict, *, location: str, video_url: str, now: datetime | None = None) -> "AlarmNotification":
        ts = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
        return cls(
            location=location,
            keyword=verdict.keyword,
            threat_type=verdict.threat_type,
            justification=verdict.justification,
            timestamp=ts,
            videoUrl=video_url,
        )

    def to_json(self) -> dict[str, Any]:
        return asdict(self)


def dumps(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def loads(text: str) -> Any:
    return json.loads(text)
