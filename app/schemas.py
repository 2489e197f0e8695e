from typing import Optional, Literal
from pydantic import BaseModel, Field

class PredictResponse(BaseModel):
    label: Literal["Normal", "Abnormal"]
    confidence: float = Field(..., ge=0.0, le=1.0)
    score: float = Field(..., ge=0.0, le=1.0)
    raw_score: float
    threshold: float
    confidence_band: Literal["High", "Medium", "Low"]
    badge: str
    guidance: str
    notes: str = "Screening aid only. Not a medical device; does not replace clinical judgment."

class LoadResponse(BaseModel):
    model_type: str
    threshold: float
    low: float
    high: float

class HealthResponse(BaseModel):
    status: str = "ok"
    model_loaded: bool
    model_type: Optional[str] = None

class Overrides(BaseModel):
    threshold: Optional[float] = Field(None, description="Decision threshold on the raw score")
    order: Optional[Literal["normal_abnormal", "abnormal_normal"]] = None
    div255: Optional[bool] = None
    bgr: Optional[bool] = None
