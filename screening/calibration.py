from dataclasses import dataclass

from screening.config import THRESHOLD_DEFAULT, LOW, HIGH

NORMAL, ABNORMAL = "Normal", "Abnormal"

@dataclass(frozen=True)
class PredictionResult:
    label: str
    confidence: float   # certainty in the direction of label
    score: float        # calibrated positive-class score
    raw_score: float
    threshold: float

def clamp01(v: float) -> float:
    return float(max(0.0, min(1.0, v)))

def calibrate(raw_score: float, low: float = LOW, high: float = HIGH) -> float:
    return clamp01((raw_score - low) / (high - low))

def decide(raw_score: float, threshold: float = THRESHOLD_DEFAULT, low: float = LOW, high: float = HIGH) -> PredictionResult:
    label = ABNORMAL if raw_score > threshold else NORMAL
    score = calibrate(raw_score, low, high)
    confidence = score if label == ABNORMAL else 1.0 - score
    return PredictionResult(label=label, confidence=clamp01(confidence), score=score,
                            raw_score=float(raw_score), threshold=float(threshold))
