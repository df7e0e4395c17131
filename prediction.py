import logging
import random
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo.errors import PyMongoError

from scoring import RECENT_SOS_WINDOW, neutral_prediction, score_location

logger = logging.getLogger(__name__)

REPORT_RADIUS_M = 2000
REPORT_LIMIT = 20
SOS_RADIUS_M = 5000
SOS_LIMIT = 50

HEATMAP_STEPS = 5  # cells either side of the centre
HEATMAP_SPACING = 0.01  # degrees, roughly 1 km
HEATMAP_TIME_OF_DAY = "evening"


def predict_danger(store, lat: float, lng: float, time_of_day: str,
                   rng: Optional[random.Random] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Look up nearby reports and recent SOS alerts, then score the point.

    A failed lookup yields the neutral prediction instead of an error.
    """
    now = now or datetime.now(timezone.utc)
    try:
        reports = store.nearby_reports(lng, lat, REPORT_RADIUS_M, REPORT_LIMIT)
        alerts = store.nearby_alerts(lng, lat, SOS_RADIUS_M, now - RECENT_SOS_WINDOW, SOS_LIMIT)
    except PyMongoError as e:
        logger.warning("Danger lookup failed at (%s, %s), using baseline: %s", lat, lng, e)
        return neutral_prediction()
    return score_location((lat, lng), time_of_day, reports, alerts, rng=rng, now=now)


def build_heatmap(store, center_lat: float, center_lng: float,
                  rng: Optional[random.Random] = None, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    cells = []
    for i in range(-HEATMAP_STEPS, HEATMAP_STEPS + 1):
        for j in range(-HEATMAP_STEPS, HEATMAP_STEPS + 1):
            lat = center_lat + i * HEATMAP_SPACING
            lng = center_lng + j * HEATMAP_SPACING
            danger = predict_danger(store, lat, lng, HEATMAP_TIME_OF_DAY, rng=rng, now=now)
            cells.append({
                "lat": lat,
                "lng": lng,
                "intensity": danger["dangerScore"] / 5,
                "dangerLevel": danger["dangerLevel"],
            })
    return cells


def grid_size() -> str:
    side = HEATMAP_STEPS * 2 + 1
    return f"{side}x{side}"
