import logging
import os
import random
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import CORS_ORIGINS, LOG_LEVEL, PORT
from database import db, point, store as geo_store
from dispatch import SimulatedNotifier, dispatch_alert
from prediction import build_heatmap, grid_size, predict_danger
from routing import compare_routes, route_variant
from schemas import (
    DangerAnalyzeRequest,
    RouteCompareRequest,
    SafetyReportCreate,
    SOSResolve,
    SOSTrigger,
    TrustedContactCreate,
    TrustedContactUpdate,
    UserCreate,
)
from scoring import recommendations_for

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"
AI_MODEL = "AegiSher AI v1.0 (Mock)"
HISTORY_LIMIT = 50
NEARBY_LIMIT = 50


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        geo_store.ensure_indexes()
        logger.info("Connected to MongoDB, indexes ensured")
    except PyMongoError as e:
        logger.error("MongoDB connection error: %s", e)
    yield


app = FastAPI(title="AegiSher API", version=VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["*"],
)


# -----------------------------
# Dependencies
# -----------------------------
_rng = random.Random()


def get_store():
    return geo_store


def get_rng() -> random.Random:
    return _rng


def get_notifier() -> SimulatedNotifier:
    return SimulatedNotifier()


def _now() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------
# Error handlers
# -----------------------------
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    missing = [str(e["loc"][-1]) for e in errors if e["type"] == "missing"]
    if missing:
        message = "Missing required fields: " + ", ".join(missing)
    elif errors[0]["type"] == "json_invalid":
        message = "Request body is not valid JSON"
    else:
        first = errors[0]
        message = f"Invalid value for {first['loc'][-1]}: {first['msg']}"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    # a wrong method on a known path is reported like an unmatched path
    if (exc.status_code == 404 and exc.detail == "Not Found") or exc.status_code == 405:
        return JSONResponse(status_code=404, content={"error": "Endpoint not found"})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Database error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Database operation failed", "message": str(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error", "message": str(exc)})


# -----------------------------
# Health
# -----------------------------
@app.get("/")
def read_root():
    return {"message": "AegiSher API is running", "version": VERSION, "status": "active"}


@app.get("/test")
def test_database():
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_url": "Set" if os.getenv("DATABASE_URL") else "Not Set",
        "database_name": None,
        "collections": [],
    }
    database = db()
    response["database_name"] = database.name
    try:
        response["collections"] = database.list_collection_names()[:10]
        response["database"] = "Connected & Working"
    except PyMongoError as e:
        response["database"] = f"Error: {str(e)[:50]}"
    return response


# -----------------------------
# Safety reports
# -----------------------------
@app.post("/api/safety-reports", status_code=201)
@app.post("/api/safety-reports/submit", status_code=201, include_in_schema=False)
def submit_report(body: SafetyReportCreate, store=Depends(get_store)):
    report = store.insert_report({
        "userId": body.user_id,
        "location": {
            **point(body.longitude, body.latitude),
            "address": body.address or "Unknown location",
            "placeName": body.place_name or "",
        },
        "safetyRating": body.safety_rating,
        "reportType": body.report_type,
        "comment": body.comment,
        "timeOfDay": body.time_of_day,
        "verified": False,
        "upvotes": 0,
    })
    return {
        "success": True,
        "message": "Safety report submitted successfully",
        "reportId": report["_id"],
        "report": report,
    }


@app.get("/api/safety-reports")
def list_reports(store=Depends(get_store)):
    reports = store.list_reports()
    return {"success": True, "count": len(reports), "reports": reports}


@app.get("/api/safety-reports/nearby")
def nearby_reports(latitude: float = Query(...), longitude: float = Query(...),
                   radius: int = Query(5000, gt=0), store=Depends(get_store)):
    reports = store.nearby_reports(longitude, latitude, radius, NEARBY_LIMIT)
    avg = sum(r["safetyRating"] for r in reports) / len(reports) if reports else 0
    return {
        "success": True,
        "count": len(reports),
        "averageSafetyRating": round(avg, 2),
        "reports": reports,
    }


@app.get("/api/safety-reports/status")
def reports_status():
    return {"success": True, "message": "Safety Reports API is live and healthy!"}


@app.get("/api/safety-reports/stats/summary")
def reports_summary(store=Depends(get_store)):
    stats = store.report_stats()
    avg = stats["averageRating"]
    return {
        "success": True,
        "statistics": {
            "totalReports": stats["totalReports"],
            "averageSafetyRating": round(avg, 2) if avg is not None else 0,
            "reportsByType": stats["reportsByType"],
        },
    }


@app.get("/api/safety-reports/{report_id}")
def get_report(report_id: str, store=Depends(get_store)):
    report = store.get_report(report_id)
    if not report:
        raise HTTPException(status_code=404, detail="Report not found")
    return {"success": True, "report": report}


@app.patch("/api/safety-reports/{report_id}/upvote")
def upvote_report(report_id: str, store=Depends(get_store)):
    report = store.increment_upvotes(report_id)
    if not report:
        raise HTTPException(status_code=404, detail="Report not found")
    return {"success": True, "message": "Report upvoted successfully", "upvotes": report["upvotes"]}


# -----------------------------
# Users
# -----------------------------
@app.post("/api/users", status_code=201)
def create_user(body: UserCreate, store=Depends(get_store)):
    email = body.email.strip().lower()
    if store.find_user_by_email(email):
        raise HTTPException(status_code=400, detail="User with this email already exists")
    try:
        user = store.insert_user({"name": body.name.strip(), "email": email, "phone": body.phone.strip()})
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User with this email already exists")
    return {"success": True, "userId": user["_id"], "user": user}


@app.get("/api/users/{user_id}")
def get_user(user_id: str, store=Depends(get_store)):
    user = store.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "user": user}


# -----------------------------
# SOS
# -----------------------------
@app.post("/api/sos/trigger")
def sos_trigger(body: SOSTrigger, store=Depends(get_store), notifier=Depends(get_notifier)):
    user = None
    if body.user_id:
        user = store.get_user(body.user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found")

    now = _now()
    alert = {
        "userId": user["_id"] if user else None,
        "location": {
            **point(body.longitude, body.latitude),
            "address": body.address or "Unknown location",
        },
        "triggerMethod": body.trigger_method,
        "status": "active",
        "resolvedAt": None,
        "createdAt": now,
    }
    alert["alertsSent"] = dispatch_alert(user, alert, notifier=notifier, now=now)
    saved = store.insert_alert(alert)
    if user:
        store.touch_user(user["_id"], now)

    return {
        "success": True,
        "message": "SOS alert triggered successfully",
        "sosId": saved["_id"],
        "alertsSent": len(saved["alertsSent"]),
        "timestamp": saved["createdAt"],
    }


@app.get("/api/sos/history/{user_id}")
def sos_history(user_id: str, store=Depends(get_store)):
    alerts = store.alert_history(user_id, HISTORY_LIMIT)
    return {"success": True, "count": len(alerts), "alerts": alerts}


@app.patch("/api/sos/{sos_id}/resolve")
def resolve_sos(sos_id: str, body: SOSResolve = SOSResolve(), store=Depends(get_store)):
    alert = store.get_alert(sos_id)
    if not alert:
        raise HTTPException(status_code=404, detail="SOS alert not found")
    if alert["status"] != "active":
        raise HTTPException(status_code=400, detail=f"SOS alert is already {alert['status']}")

    resolved = store.resolve_alert(sos_id, body.status, _now())
    if not resolved:
        # resolved concurrently by another request
        raise HTTPException(status_code=400, detail="SOS alert is no longer active")
    return {"success": True, "message": "SOS alert resolved", "alert": resolved}


# -----------------------------
# Trusted circle
# -----------------------------
def _require_user(store, user_id: str):
    user = store.get_user(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@app.get("/api/trusted-circle/{user_id}")
def list_contacts(user_id: str, store=Depends(get_store)):
    contacts = _require_user(store, user_id).get("trustedCircle", [])
    return {"success": True, "count": len(contacts), "contacts": contacts}


@app.post("/api/trusted-circle/{user_id}/add", status_code=201)
def add_contact(user_id: str, body: TrustedContactCreate, store=Depends(get_store)):
    user = _require_user(store, user_id)
    phone = body.phone.strip()
    if any(c.get("phone") == phone for c in user.get("trustedCircle", [])):
        raise HTTPException(status_code=400, detail="Contact with this phone already exists")

    contact = store.add_contact(user_id, {
        "name": body.name.strip(),
        "phone": phone,
        "relationship": body.relationship,
        "isPrimary": body.is_primary,
        "addedAt": _now(),
    })
    if not contact:
        raise HTTPException(status_code=400, detail="Contact with this phone already exists")
    return {"success": True, "message": "Contact added successfully", "contact": contact}


@app.patch("/api/trusted-circle/{user_id}/{contact_id}")
def update_contact(user_id: str, contact_id: str, body: TrustedContactUpdate, store=Depends(get_store)):
    fields = body.model_dump(by_alias=True, exclude_none=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No contact fields to update")
    user = _require_user(store, user_id)
    if "phone" in fields:
        fields["phone"] = fields["phone"].strip()
        if any(c.get("phone") == fields["phone"] and c.get("_id") != contact_id
               for c in user.get("trustedCircle", [])):
            raise HTTPException(status_code=400, detail="Contact with this phone already exists")

    contact = store.update_contact(user_id, contact_id, fields)
    if not contact:
        raise HTTPException(status_code=404, detail="Contact not found")
    return {"success": True, "message": "Contact updated successfully", "contact": contact}


@app.delete("/api/trusted-circle/{user_id}/{contact_id}")
def remove_contact(user_id: str, contact_id: str, store=Depends(get_store)):
    _require_user(store, user_id)
    if not store.remove_contact(user_id, contact_id):
        raise HTTPException(status_code=404, detail="Contact not found")
    return {"success": True, "message": "Contact removed"}


# -----------------------------
# Danger prediction
# -----------------------------
@app.post("/api/danger-prediction/analyze")
def analyze_danger(body: DangerAnalyzeRequest, store=Depends(get_store), rng=Depends(get_rng)):
    prediction = predict_danger(store, body.latitude, body.longitude, body.time_of_day, rng=rng)
    return {
        "success": True,
        "location": {"latitude": body.latitude, "longitude": body.longitude},
        "timestamp": _now(),
        "prediction": {**prediction, "recommendations": recommendations_for(prediction["dangerScore"])},
        "aiModel": AI_MODEL,
        "confidenceLevel": "85%",
    }


@app.get("/api/danger-prediction/heatmap")
def danger_heatmap(center_lat: float = Query(..., alias="centerLat"),
                   center_lng: float = Query(..., alias="centerLng"),
                   radius: int = Query(10000, gt=0),
                   store=Depends(get_store), rng=Depends(get_rng)):
    cells = build_heatmap(store, center_lat, center_lng, rng=rng)
    return {
        "success": True,
        "gridSize": grid_size(),
        "center": {"lat": center_lat, "lng": center_lng},
        "radius": radius,
        "heatmapData": cells,
    }


# -----------------------------
# Routes
# -----------------------------
@app.post("/api/routes/compare")
def routes_compare(body: RouteCompareRequest, rng=Depends(get_rng)):
    comparison = compare_routes(body.start_latitude, body.start_longitude,
                                body.end_latitude, body.end_longitude, rng=rng)
    return {"success": True, **comparison}


@app.get("/api/routes/safe")
def safe_route(start_lat: float = Query(..., alias="startLat"),
               start_lng: float = Query(..., alias="startLng"),
               end_lat: float = Query(..., alias="endLat"),
               end_lng: float = Query(..., alias="endLng"),
               rng=Depends(get_rng)):
    return {"success": True, "route": route_variant(start_lat, start_lng, end_lat, end_lng, "safe", rng)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
