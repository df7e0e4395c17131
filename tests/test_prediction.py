import random
from datetime import datetime, timedelta, timezone

from prediction import build_heatmap, grid_size, predict_danger


def test_prediction_uses_nearby_reports(fake_store, make_report):
    fake_store.insert_report(make_report(12.9, 77.6, 5))
    fake_store.insert_report(make_report(12.901, 77.601, 5))
    # about 11 km away, outside the 2 km report radius
    fake_store.insert_report(make_report(13.0, 77.6, 1))

    result = predict_danger(fake_store, 12.9, 77.6, "morning", rng=random.Random(3))
    assert result["reportsAnalyzed"] == 2
    # base 1, morning -0.5, jitter >= -0.25 -> clamped to 1
    assert result["dangerScore"] == 1.0


def test_prediction_counts_recent_sos_only(fake_store):
    now = datetime.now(timezone.utc)
    loc = {"type": "Point", "coordinates": [77.6, 12.9]}
    fake_store.insert_alert({"location": loc, "status": "active", "createdAt": now - timedelta(days=1)})
    fake_store.insert_alert({"location": loc, "status": "active", "createdAt": now - timedelta(days=10)})

    result = predict_danger(fake_store, 12.9, 77.6, "evening", rng=random.Random(3), now=now)
    assert result["sosAlertsNearby"] == 1


def test_lookup_failure_degrades_to_neutral(fake_store):
    fake_store.fail_lookups = True
    result = predict_danger(fake_store, 12.9, 77.6, "night")
    assert result["dangerScore"] == 3.0
    assert result["dangerLevel"] == "Moderate"
    assert result["factors"][0]["factor"] == "Insufficient Data"


def test_heatmap_has_121_cells(fake_store, make_report):
    fake_store.insert_report(make_report(12.9, 77.6, 1))
    cells = build_heatmap(fake_store, 12.9, 77.6, rng=random.Random(0))
    assert len(cells) == 121
    assert grid_size() == "11x11"
    assert all(0 < c["intensity"] <= 1 for c in cells)
    lats = sorted({round(c["lat"], 4) for c in cells})
    assert lats[0] == 12.85 and lats[-1] == 12.95


def test_heatmap_survives_store_failure(fake_store):
    fake_store.fail_lookups = True
    cells = build_heatmap(fake_store, 0.0, 0.0)
    assert len(cells) == 121
    assert {c["intensity"] for c in cells} == {0.6}
