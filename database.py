from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, GEOSPHERE, MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database

from config import DATABASE_NAME, DATABASE_URL, MONGO_TIMEOUT_MS

REPORTS = "safetyreports"
ALERTS = "sos"
USERS = "users"

_client = MongoClient(DATABASE_URL, tz_aware=True, serverSelectionTimeoutMS=MONGO_TIMEOUT_MS)
_db = _client[DATABASE_NAME]


def db() -> Database:
    return _db


def _object_id(value: Optional[str]) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if value and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize(value: Any) -> Any:
    """Convert ObjectIds (including nested ones) to strings for JSON responses."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize(v) for v in value]
    return value


def point(lng: float, lat: float) -> Dict[str, Any]:
    # GeoJSON order is [longitude, latitude]
    return {"type": "Point", "coordinates": [lng, lat]}


def _near(lng: float, lat: float, max_distance: float) -> Dict[str, Any]:
    return {"$near": {"$geometry": point(lng, lat), "$maxDistance": max_distance}}


def create_document(collection: Collection, data: Dict[str, Any]) -> Dict[str, Any]:
    payload = {"createdAt": datetime.now(timezone.utc), **data}
    res = collection.insert_one(payload)
    payload["_id"] = res.inserted_id
    return serialize(payload)


def get_documents(collection: Collection, filter_dict: Optional[Dict[str, Any]] = None, limit: int = 0) -> List[Dict[str, Any]]:
    filter_dict = filter_dict or {}
    cursor = collection.find(filter_dict).sort("createdAt", DESCENDING)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize(d) for d in cursor]


class MongoGeoStore:
    """Document store for reports, SOS alerts and users.

    Each write touches a single document, so MongoDB's per-document atomicity
    is the only guarantee relied on.
    """

    def __init__(self, database: Database):
        self.reports: Collection = database[REPORTS]
        self.alerts: Collection = database[ALERTS]
        self.users: Collection = database[USERS]

    def ensure_indexes(self) -> None:
        self.reports.create_index([("location", GEOSPHERE)])
        self.reports.create_index([("createdAt", DESCENDING)])
        self.alerts.create_index([("location", GEOSPHERE)])
        self.alerts.create_index([("userId", ASCENDING), ("createdAt", DESCENDING)])
        self.users.create_index([("email", ASCENDING)], unique=True)

    # Safety reports

    def insert_report(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        return create_document(self.reports, {**doc, "userId": _object_id(doc.get("userId"))})

    def list_reports(self) -> List[Dict[str, Any]]:
        return get_documents(self.reports)

    def get_report(self, report_id: str) -> Optional[Dict[str, Any]]:
        oid = _object_id(report_id)
        if oid is None:
            return None
        return serialize(self.reports.find_one({"_id": oid}))

    def nearby_reports(self, lng: float, lat: float, max_distance: float, limit: int) -> List[Dict[str, Any]]:
        cursor = self.reports.find({"location": _near(lng, lat, max_distance)}).limit(limit)
        return [serialize(d) for d in cursor]

    def increment_upvotes(self, report_id: str) -> Optional[Dict[str, Any]]:
        oid = _object_id(report_id)
        if oid is None:
            return None
        doc = self.reports.find_one_and_update(
            {"_id": oid},
            {"$inc": {"upvotes": 1}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize(doc)

    def report_stats(self) -> Dict[str, Any]:
        total = self.reports.count_documents({})
        avg = list(self.reports.aggregate([
            {"$group": {"_id": None, "averageRating": {"$avg": "$safetyRating"}}},
        ]))
        by_type = list(self.reports.aggregate([
            {"$group": {"_id": "$reportType", "count": {"$sum": 1}}},
            {"$sort": {"count": -1}},
        ]))
        return {
            "totalReports": total,
            "averageRating": avg[0]["averageRating"] if avg else None,
            "reportsByType": by_type,
        }

    # SOS alerts

    def insert_alert(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        return create_document(self.alerts, {**doc, "userId": _object_id(doc.get("userId"))})

    def get_alert(self, alert_id: str) -> Optional[Dict[str, Any]]:
        oid = _object_id(alert_id)
        if oid is None:
            return None
        return serialize(self.alerts.find_one({"_id": oid}))

    def nearby_alerts(self, lng: float, lat: float, max_distance: float, since: datetime, limit: int) -> List[Dict[str, Any]]:
        q = {"location": _near(lng, lat, max_distance), "createdAt": {"$gte": since}}
        return [serialize(d) for d in self.alerts.find(q).limit(limit)]

    def alert_history(self, user_id: str, limit: int) -> List[Dict[str, Any]]:
        oid = _object_id(user_id)
        if oid is None:
            return []
        return get_documents(self.alerts, {"userId": oid}, limit=limit)

    def resolve_alert(self, alert_id: str, status: str, resolved_at: datetime) -> Optional[Dict[str, Any]]:
        """Move an active alert to a terminal status; None if no active alert matched."""
        oid = _object_id(alert_id)
        if oid is None:
            return None
        doc = self.alerts.find_one_and_update(
            {"_id": oid, "status": "active"},
            {"$set": {"status": status, "resolvedAt": resolved_at}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize(doc)

    # Users and trusted circles

    def insert_user(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        return create_document(self.users, {"trustedCircle": [], "lastActive": now, **doc})

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        oid = _object_id(user_id)
        if oid is None:
            return None
        return serialize(self.users.find_one({"_id": oid}))

    def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return serialize(self.users.find_one({"email": email}))

    def touch_user(self, user_id: str, when: datetime) -> None:
        oid = _object_id(user_id)
        if oid is not None:
            self.users.update_one({"_id": oid}, {"$set": {"lastActive": when}})

    def add_contact(self, user_id: str, contact: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Append a contact unless its phone is already in the circle."""
        oid = _object_id(user_id)
        if oid is None:
            return None
        contact = {"_id": ObjectId(), **contact}
        res = self.users.update_one(
            {"_id": oid, "trustedCircle.phone": {"$ne": contact["phone"]}},
            {"$push": {"trustedCircle": contact}},
        )
        if res.modified_count == 0:
            return None
        return serialize(contact)

    def update_contact(self, user_id: str, contact_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        oid, cid = _object_id(user_id), _object_id(contact_id)
        if oid is None or cid is None:
            return None
        doc = self.users.find_one_and_update(
            {"_id": oid, "trustedCircle._id": cid},
            {"$set": {f"trustedCircle.$.{k}": v for k, v in fields.items()}},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        match = [c for c in doc.get("trustedCircle", []) if c.get("_id") == cid]
        return serialize(match[0]) if match else None

    def remove_contact(self, user_id: str, contact_id: str) -> bool:
        oid, cid = _object_id(user_id), _object_id(contact_id)
        if oid is None or cid is None:
            return False
        res = self.users.update_one(
            {"_id": oid, "trustedCircle._id": cid},
            {"$pull": {"trustedCircle": {"_id": cid}}},
        )
        return res.modified_count > 0


store = MongoGeoStore(_db)
