"""
Request schemas and closed value sets for the AegiSher API.

Stored documents live in three MongoDB collections:
- safetyreports
- sos
- users (trusted contacts are embedded in trustedCircle)

Field names on the wire and in storage are camelCase.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

ReportType = Literal["lighting", "crowding", "incident", "general", "positive"]
TimeOfDay = Literal["morning", "afternoon", "evening", "night"]
TriggerMethod = Literal["manual", "voice", "fall_detection", "suspicious_motion"]
TerminalStatus = Literal["resolved", "false_alarm"]
Relationship = Literal["family", "friend", "colleague", "other"]
DeliveryStatus = Literal["sent", "failed", "delivered"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SafetyReportCreate(CamelModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    safety_rating: int = Field(ge=1, le=5, description="1 = very unsafe, 5 = very safe")
    time_of_day: TimeOfDay
    user_id: Optional[str] = None
    address: Optional[str] = None
    place_name: Optional[str] = None
    report_type: ReportType = "general"
    comment: str = Field("", max_length=500)


class UserCreate(CamelModel):
    name: str = Field(min_length=1)
    email: EmailStr
    phone: str = Field(min_length=1)


class SOSTrigger(CamelModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    user_id: Optional[str] = None
    address: Optional[str] = None
    trigger_method: TriggerMethod = "manual"


class SOSResolve(CamelModel):
    status: TerminalStatus = "resolved"


class TrustedContactCreate(CamelModel):
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    relationship: Relationship = "other"
    is_primary: bool = False


class TrustedContactUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = Field(None, min_length=1)
    relationship: Optional[Relationship] = None
    is_primary: Optional[bool] = None


class DangerAnalyzeRequest(CamelModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    # unrecognised values are scored with a zero time offset
    time_of_day: Optional[str] = Field(None, validate_default=True)

    @field_validator("time_of_day")
    @classmethod
    def default_to_evening(cls, v: Optional[str]) -> str:
        return v or "evening"


class RouteCompareRequest(CamelModel):
    start_latitude: float
    start_longitude: float
    end_latitude: float
    end_longitude: float
    time_of_day: Optional[TimeOfDay] = None
