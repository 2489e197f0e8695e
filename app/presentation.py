from screening.calibration import ABNORMAL

HIGH_BAND, MEDIUM_BAND = 0.75, 0.50

GUIDANCE = {
    (ABNORMAL, "High"):   "High likelihood of positive finding. Further evaluation is recommended.",
    (ABNORMAL, "Medium"): "A positive finding is possible. Consider additional review.",
    (ABNORMAL, "Low"):    "Classified as positive, but confidence is low. Re-evaluation with clinical context is advised.",
    ("Normal", "High"):   "High likelihood of normal. Consider follow-up as appropriate to the clinical context.",
    ("Normal", "Medium"): "Near the decision threshold. Interpret together with clinical findings.",
    ("Normal", "Low"):    "Classified as normal, but confidence is low. Reassessment may be considered if clinically indicated.",
}

def confidence_band(confidence: float) -> str:
    if confidence >= HIGH_BAND:   return "High"
    if confidence >= MEDIUM_BAND: return "Medium"
    return "Low"

def badge_text(band: str) -> str:
    return f"{band} confidence"

def guidance_text(label: str, band: str) -> str:
    return GUIDANCE[(label, band)]
