"""Mock safe-vs-direct route comparison.

No routing engine is involved: both variants are synthesised from the straight
line between the two points. Distances use a flat-earth approximation
(degrees x 111 km), which only holds over short distances.
"""

import random
from math import sqrt
from typing import Any, Dict, List, Optional

KM_PER_DEGREE = 111
MINUTES_PER_KM = 12

SAFE_DISTANCE_FACTOR = 1.15
SAFE_DURATION_FACTOR = 1.2

SAFE_FEATURES = [
    "Well-lit streets",
    "High footfall area",
    "Police stations nearby",
    "CCTV coverage",
]
NORMAL_FEATURES = ["Shortest route", "Less traffic"]
NORMAL_WARNINGS = ["Passes through poorly lit area", "Low footfall after 8 PM"]


def approx_distance_km(start_lat: float, start_lng: float, end_lat: float, end_lng: float) -> float:
    return sqrt((end_lat - start_lat) ** 2 + (end_lng - start_lng) ** 2) * KM_PER_DEGREE


def route_variant(start_lat: float, start_lng: float, end_lat: float, end_lng: float,
                  route_type: str, rng: Optional[random.Random] = None) -> Dict[str, Any]:
    rng = rng or random.Random()
    distance = approx_distance_km(start_lat, start_lng, end_lat, end_lng)
    base_time = distance * MINUTES_PER_KM

    if route_type == "safe":
        return {
            "type": "safe",
            "distance": f"{distance * SAFE_DISTANCE_FACTOR:.2f} km",
            "duration": f"{round(base_time * SAFE_DURATION_FACTOR)} mins",
            "safetyScore": round(rng.uniform(4.0, 5.0), 1),
            "dangerZonesAvoided": rng.randint(1, 3),
            "features": list(SAFE_FEATURES),
            "warnings": [],
        }
    return {
        "type": "normal",
        "distance": f"{distance:.2f} km",
        "duration": f"{round(base_time)} mins",
        "safetyScore": round(rng.uniform(2.0, 4.0), 1),
        "dangerZonesAvoided": 0,
        "features": list(NORMAL_FEATURES),
        "warnings": list(NORMAL_WARNINGS),
    }


def _waypoints(start_lat: float, start_lng: float, end_lat: float, end_lng: float, offsets) -> List[Dict[str, float]]:
    pts = [{"lat": start_lat, "lng": start_lng}]
    pts += [{"lat": start_lat + dlat, "lng": start_lng + dlng} for dlat, dlng in offsets]
    pts.append({"lat": end_lat, "lng": end_lng})
    return pts


def compare_routes(start_lat: float, start_lng: float, end_lat: float, end_lng: float,
                   rng: Optional[random.Random] = None) -> Dict[str, Any]:
    # TODO: derive route safety from nearby reports once a routing engine provides real segments
    rng = rng or random.Random()
    safe = route_variant(start_lat, start_lng, end_lat, end_lng, "safe", rng)
    normal = route_variant(start_lat, start_lng, end_lat, end_lng, "normal", rng)
    safe["waypoints"] = _waypoints(start_lat, start_lng, end_lat, end_lng, [(0.005, 0.003), (0.008, 0.008)])
    normal["waypoints"] = _waypoints(start_lat, start_lng, end_lat, end_lng, [(0.003, 0.005)])

    return {
        "recommendation": "safe",
        "message": "Safe route recommended for better security",
        "routes": {"safe": safe, "normal": normal},
        "timeDifference": "2-3 mins longer but much safer",
        "dangerZones": [{
            "lat": start_lat + 0.002,
            "lng": start_lng + 0.004,
            "reason": "Low lighting reported",
            "severity": "medium",
        }],
    }
