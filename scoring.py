"""Danger scoring for a point and time of day.

Scores run from 1 (safe) to 5 (unsafe). Community safety ratings use the
opposite scale, so the base term inverts their mean. Everything here is pure:
callers hand in the nearby reports and alerts plus a random source.
"""

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 3.0
MIN_SCORE, MAX_SCORE = 1.0, 5.0

SOS_WEIGHT = 0.3
SOS_CAP = 1.5
RECENT_SOS_WINDOW = timedelta(days=7)

CROWD_JITTER = 0.25
MANY_REPORTS = 10

TIME_OF_DAY_OFFSETS = {
    "morning": -0.5,
    "afternoon": -0.3,
    "evening": 0.3,
    "night": 1.0,
}

# upper bound (inclusive) -> level; anything above the last bound is Very Unsafe
DANGER_LEVELS: List[Tuple[float, str]] = [
    (1.5, "Very Safe"),
    (2.5, "Safe"),
    (3.5, "Moderate"),
    (4.5, "Unsafe"),
]


def base_score(reports: Sequence[Dict[str, Any]]) -> float:
    if not reports:
        return NEUTRAL_SCORE
    avg_rating = sum(r["safetyRating"] for r in reports) / len(reports)
    return 6 - avg_rating


def sos_adjustment(alert_count: int) -> float:
    return min(alert_count * SOS_WEIGHT, SOS_CAP)


def time_of_day_offset(time_of_day: str) -> float:
    return TIME_OF_DAY_OFFSETS.get(time_of_day, 0.0)


def recent_alerts(alerts: Sequence[Dict[str, Any]], now: datetime) -> List[Dict[str, Any]]:
    """Alerts created inside the 7-day window. Alerts without a timestamp count as recent."""
    cutoff = now - RECENT_SOS_WINDOW
    return [a for a in alerts if a.get("createdAt") is None or a["createdAt"] >= cutoff]


def raw_danger_score(time_of_day: str, reports: Sequence[Dict[str, Any]], alert_count: int, jitter: float) -> float:
    """Unclamped score: base + SOS activity + time of day + crowd jitter."""
    return base_score(reports) + sos_adjustment(alert_count) + time_of_day_offset(time_of_day) + jitter


def clamp_score(score: float) -> float:
    return max(MIN_SCORE, min(MAX_SCORE, score))


def danger_level(score: float) -> str:
    for bound, level in DANGER_LEVELS:
        if score <= bound:
            return level
    return "Very Unsafe"


def explain(time_of_day: str, report_count: int, alert_count: int, jitter: float) -> List[Dict[str, str]]:
    factors = []
    if report_count > 0:
        factors.append({
            "factor": "Community Reports",
            "impact": "High" if report_count > MANY_REPORTS else "Medium",
            "description": f"{report_count} safety reports in area",
        })
    if alert_count > 0:
        factors.append({
            "factor": "Recent SOS Alerts",
            "impact": "High",
            "description": f"{alert_count} emergency alerts in past week",
        })
    factors.append({
        "factor": "Time of Day",
        "impact": "High" if time_of_day == "night" else "Low",
        "description": f"{time_of_day[:1].upper()}{time_of_day[1:]} hours",
    })
    # crowd density is simulated, so the only signal is the jitter sign
    factors.append({
        "factor": "Crowd Density",
        "impact": "Medium" if jitter > 0 else "Low",
        "description": "Low footfall detected" if jitter > 0 else "Good crowd presence",
    })
    return factors


def score_location(
    location: Tuple[float, float],
    time_of_day: str,
    nearby_reports: Sequence[Dict[str, Any]],
    nearby_alerts: Sequence[Dict[str, Any]],
    rng: Optional[random.Random] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Score a (lat, lng) location from pre-fetched reports and SOS alerts."""
    rng = rng or random.Random()
    now = now or datetime.now(timezone.utc)

    alert_count = len(recent_alerts(nearby_alerts, now))
    jitter = rng.uniform(-CROWD_JITTER, CROWD_JITTER)
    score = clamp_score(raw_danger_score(time_of_day, nearby_reports, alert_count, jitter))

    logger.debug("Scored %s at %s: %.2f", location, time_of_day, score)
    return {
        "dangerScore": round(score, 1),
        "dangerLevel": danger_level(score),
        "factors": explain(time_of_day, len(nearby_reports), alert_count, jitter),
        "reportsAnalyzed": len(nearby_reports),
        "sosAlertsNearby": alert_count,
    }


def neutral_prediction() -> Dict[str, Any]:
    return {
        "dangerScore": NEUTRAL_SCORE,
        "dangerLevel": "Moderate",
        "factors": [{
            "factor": "Insufficient Data",
            "impact": "Medium",
            "description": "Using baseline prediction",
        }],
        "reportsAnalyzed": 0,
        "sosAlertsNearby": 0,
    }


def recommendations_for(score: float) -> List[str]:
    if score >= 4:
        return [
            "Avoid traveling alone in this area",
            "Consider using safe route alternative",
            "Share live location with trusted contacts",
        ]
    if score >= 3:
        return ["Stay alert in this area", "Keep emergency contacts ready"]
    return ["Area appears safe", "Continue normal precautions"]
