"""Tests for wire types."""

from datetime import datetime

import pytest

from alertserver.protocol import AlarmNotification, ThreatVerdict, dumps, loads


def test_verdict_from_json():
    verdict = ThreatVerdict.from_json(
        {"keyword": "gun", "threat_type": "armed", "is_threat": "SI", "justification": "weapon mentioned"}
    )
    assert verdict.confirmed
    assert verdict.keyword == "gun"


@pytest.mark.parametrize("flag", ["NO", "", "yes", "true", "si", " SI "])
def test_verdict_only_si_confirms(flag):
    verdict = ThreatVerdict(keyword="", threat_type="", is_threat=flag, justification="")
    assert not verdict.confirmed


def test_verdict_missing_key():
    with pytest.raises(ValueError, match="is_threat"):
        ThreatVerdict.from_json({"keyword": "a", "threat_type": "b", "justification": "c"})


def test_verdict_not_an_object():
    with pytest.raises(ValueError):
        ThreatVerdict.from_json(["SI"])


def test_alarm_notification_build():
    verdict = ThreatVerdict(keyword="fire", threat_type="incendio", is_threat="SI", justification="j")
    n = AlarmNotification.build(
        verdict, location="Quito, Pichincha, Ecuador", video_url="content://video/123", now=datetime(2024, 5, 1, 9, 3, 7)
    )
    assert n.to_json() == {
        "location": "Quito, Pichincha, Ecuador",
        "keyword": "fire",
        "threat_type": "incendio",
        "justification": "j",
        "timestamp": "2024-05-01 09:03:07",
        "videoUrl": "content://video/123",
    }


def test_dumps_is_compact_and_unicode():
    assert dumps({"a": "ñ", "b": 1}) == '{"a":"ñ","b":1}'
    assert loads('{"a":1}') == {"a": 1}
