import random
import threading
import uuid
from copy import deepcopy
from datetime import datetime, timezone
from math import asin, cos, radians, sin, sqrt

import pytest
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from main import app, get_rng, get_store


def haversine_m(lat1, lon1, lat2, lon2):
    R = 6371000
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)
    a = sin(dlat/2)**2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlon/2)**2
    return R * 2 * asin(sqrt(a))


def _new_id():
    return uuid.uuid4().hex[:24]


class InMemoryGeoStore:
    """Same method surface as database.MongoGeoStore, backed by lists."""

    def __init__(self):
        self.reports = []
        self.alerts = []
        self.users = []
        self.fail_lookups = False
        self._lock = threading.Lock()

    def _insert(self, rows, doc):
        doc = {"createdAt": datetime.now(timezone.utc), **deepcopy(doc), "_id": _new_id()}
        rows.append(doc)
        return deepcopy(doc)

    @staticmethod
    def _find(rows, _id):
        return next((r for r in rows if r["_id"] == _id), None)

    def _near(self, rows, lng, lat, max_distance):
        if self.fail_lookups:
            raise PyMongoError("geo index unavailable")
        hits = []
        for r in rows:
            r_lng, r_lat = r["location"]["coordinates"]
            d = haversine_m(lat, lng, r_lat, r_lng)
            if d <= max_distance:
                hits.append((d, r))
        hits.sort(key=lambda h: h[0])
        return [r for _, r in hits]

    def ensure_indexes(self):
        pass

    def insert_report(self, doc):
        return self._insert(self.reports, doc)

    def list_reports(self):
        return deepcopy(sorted(self.reports, key=lambda r: r["createdAt"], reverse=True))

    def get_report(self, report_id):
        return deepcopy(self._find(self.reports, report_id))

    def nearby_reports(self, lng, lat, max_distance, limit):
        return deepcopy(self._near(self.reports, lng, lat, max_distance)[:limit])

    def increment_upvotes(self, report_id):
        with self._lock:
            report = self._find(self.reports, report_id)
            if report is None:
                return None
            report["upvotes"] += 1
            return deepcopy(report)

    def report_stats(self):
        ratings = [r["safetyRating"] for r in self.reports]
        counts = {}
        for r in self.reports:
            counts[r["reportType"]] = counts.get(r["reportType"], 0) + 1
        return {
            "totalReports": len(self.reports),
            "averageRating": sum(ratings) / len(ratings) if ratings else None,
            "reportsByType": [{"_id": k, "count": v} for k, v in counts.items()],
        }

    def insert_alert(self, doc):
        return self._insert(self.alerts, doc)

    def get_alert(self, alert_id):
        return deepcopy(self._find(self.alerts, alert_id))

    def nearby_alerts(self, lng, lat, max_distance, since, limit):
        hits = [a for a in self._near(self.alerts, lng, lat, max_distance) if a["createdAt"] >= since]
        return deepcopy(hits[:limit])

    def alert_history(self, user_id, limit):
        mine = [a for a in self.alerts if a.get("userId") == user_id]
        return deepcopy(sorted(mine, key=lambda a: a["createdAt"], reverse=True)[:limit])

    def resolve_alert(self, alert_id, status, resolved_at):
        alert = self._find(self.alerts, alert_id)
        if alert is None or alert["status"] != "active":
            return None
        alert.update(status=status, resolvedAt=resolved_at)
        return deepcopy(alert)

    def insert_user(self, doc):
        now = datetime.now(timezone.utc)
        return self._insert(self.users, {"trustedCircle": [], "lastActive": now, **doc})

    def get_user(self, user_id):
        return deepcopy(self._find(self.users, user_id))

    def find_user_by_email(self, email):
        return deepcopy(next((u for u in self.users if u["email"] == email), None))

    def touch_user(self, user_id, when):
        user = self._find(self.users, user_id)
        if user:
            user["lastActive"] = when

    def add_contact(self, user_id, contact):
        user = self._find(self.users, user_id)
        if user is None or any(c["phone"] == contact["phone"] for c in user["trustedCircle"]):
            return None
        contact = {"_id": _new_id(), **contact}
        user["trustedCircle"].append(contact)
        return deepcopy(contact)

    def update_contact(self, user_id, contact_id, fields):
        user = self._find(self.users, user_id)
        contact = user and self._find(user["trustedCircle"], contact_id)
        if not contact:
            return None
        contact.update(fields)
        return deepcopy(contact)

    def remove_contact(self, user_id, contact_id):
        user = self._find(self.users, user_id)
        contact = user and self._find(user["trustedCircle"], contact_id)
        if not contact:
            return False
        user["trustedCircle"].remove(contact)
        return True


@pytest.fixture
def fake_store():
    return InMemoryGeoStore()


@pytest.fixture
def client(fake_store):
    app.dependency_overrides[get_store] = lambda: fake_store
    app.dependency_overrides[get_rng] = lambda: random.Random(42)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def user(fake_store):
    return fake_store.insert_user({"name": "Asha", "email": "asha@example.com", "phone": "+911234567890"})


def _report_doc(lat, lng, rating, report_type="general"):
    return {
        "userId": None,
        "location": {"type": "Point", "coordinates": [lng, lat], "address": "Unknown location", "placeName": ""},
        "safetyRating": rating,
        "reportType": report_type,
        "comment": "",
        "timeOfDay": "evening",
        "verified": False,
        "upvotes": 0,
    }


@pytest.fixture
def make_report():
    return _report_doc
