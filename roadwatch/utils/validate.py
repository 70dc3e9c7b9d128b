"""
Pydantic schemas for sensor input, persisted records and HTTP payloads.
"""

from typing import Literal, Optional
from pydantic import BaseModel, Field

DefectType = Literal["pothole", "speed_breaker", "normal"]
ReportedDefectType = Literal["pothole", "speed_breaker"]


class Accelerometer(BaseModel):
    """
    Raw gravity-inclusive acceleration (m/s²). Axes may be missing on some devices.
    """
    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[float] = None

class GpsFix(BaseModel):
    """
    Last known position. ``speed`` is in m/s and absent without a Doppler fix.
    """
    latitude: float
    longitude: float
    accuracy: float = 0.0
    speed: Optional[float] = None

class SensorReading(BaseModel):
    """
    One instant sample from the phone.
    """
    timestamp: int
    accelerometer: Accelerometer
    gps: Optional[GpsFix] = None

class WindowSummary(BaseModel):
    """
    Wire form of a processed window (see roadwatch.analysis.types.ProcessedWindow).
    """
    start_time: int
    end_time: int
    magnitude: float
    peak_magnitude: float
    average_speed: float
    centroid: tuple[float, float]
    sample_count: int = Field(ge=1)

class Classification(BaseModel):
    defect_type: DefectType
    confidence: float = Field(ge=0.0, le=1.0)
    severity: int = Field(ge=0, le=10)

class Detection(BaseModel):
    """
    Normalized record for a single classified, user-attributed detection.
    """
    id: Optional[int] = None
    session_id: str
    user_id: str
    timestamp: int
    lat: float
    lon: float
    defect_type: DefectType
    confidence: float = Field(ge=0.0, le=1.0)
    severity: int = Field(ge=0, le=10)
    window: Optional[WindowSummary] = None

class AggregatedReport(BaseModel):
    """
    One spatial cluster of detections believed to be the same physical defect.
    """
    id: Optional[int] = None
    geohash: str
    lat: float
    lon: float
    defect_type: ReportedDefectType
    average_severity: float
    report_count: int = Field(ge=1)
    unique_users: list[str]
    first_reported: int
    last_reported: int
    credibility_score: float = Field(ge=0.0, le=1.0)

class RideSessionRecord(BaseModel):
    id: str
    user_id: str
    start_ts: int
    end_ts: Optional[int] = None
    detection_count: int = 0
    distance_m: float = 0.0
    status: Literal["active", "completed"] = "active"

class RTIDraft(BaseModel):
    """
    A right-to-information complaint draft addressed to a municipal authority,
    citing one or more aggregated reports. ``content`` is the letter body as
    the user last saved it.
    """
    id: Optional[int] = None
    user_id: str
    created_at: int
    report_ids: list[int] = Field(default_factory=list)
    municipal_authority: str
    lat: float
    lon: float
    address: str = ""
    defect_type: ReportedDefectType
    severity: str
    detection_count: int = Field(default=0, ge=0)
    content: str = ""
    status: Literal["draft", "finalized"] = "draft"

class RTIDraftUpdate(BaseModel):
    """
    Partial update of a draft; unset fields are left as stored.
    """
    municipal_authority: Optional[str] = None
    address: Optional[str] = None
    content: Optional[str] = None
    status: Optional[Literal["draft", "finalized"]] = None

class PublicStats(BaseModel):
    total_detections: int
    verified_reports: int
    timestamp: int

class Bounds(BaseModel):
    north: float
    south: float
    east: float
    west: float
