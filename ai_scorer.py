import json
import logging
import os
from typing import Optional

import requests
from pydantic import ValidationError

from schemas import AIAnalysis
from workflow import ExternalServiceDegraded

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

# Per-hectare potential used when the scorer cannot be reached
FALLBACK_POTENTIAL = {"MANGROVE": 140.0, "SEAGRASS": 75.0}

_PROMPT = (
    "Analyze this {ecosystem} site. Return JSON with these properties:\n"
    "- confidenceScore: float (0-1)\n"
    "- healthAssessment: string (short summary)\n"
    "- estimatedCarbonPotential: float (carbon tons per hectare)\n"
    "- isVerified: boolean (true if image matches ecosystem type)"
)

_RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "confidenceScore": {"type": "NUMBER"},
        "healthAssessment": {"type": "STRING"},
        "estimatedCarbonPotential": {"type": "NUMBER"},
        "isVerified": {"type": "BOOLEAN"},
    },
    "required": ["confidenceScore", "healthAssessment", "estimatedCarbonPotential", "isVerified"],
}


def fallback_analysis(ecosystem_type: str) -> AIAnalysis:
    return AIAnalysis(
        confidence_score=0.0,
        health_assessment=f"AI analysis unavailable; {ecosystem_type} site queued for manual review.",
        estimated_carbon_potential=FALLBACK_POTENTIAL.get(ecosystem_type, 0.0),
        is_verified=False,
        degraded=True,
    )


def _timeout() -> float:
    return float(os.getenv("AI_TIMEOUT_SECONDS", "10"))


def _image_part(image_ref: str) -> dict:
    """Gemini content part for a data URL, raw base64, or a URL reference.

    URL references are handed to the model as file_data; the server never fetches them.
    """
    if image_ref.startswith(("http://", "https://")):
        return {"file_data": {"mime_type": "image/jpeg", "file_uri": image_ref}}
    if image_ref.startswith("data:"):
        image_ref = image_ref.split(",", 1)[1]
    return {"inline_data": {"mime_type": "image/jpeg", "data": image_ref}}


def request_analysis(image_ref: str, ecosystem_type: str, api_key: Optional[str] = None) -> AIAnalysis:
    """Call the Gemini scorer. Raises ExternalServiceDegraded on any failure."""
    api_key = api_key or os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise ExternalServiceDegraded("GEMINI_API_KEY not set")
    model = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
    try:
        body = {
            "contents": [{
                "parts": [
                    _image_part(image_ref),
                    {"text": _PROMPT.format(ecosystem=ecosystem_type)},
                ]
            }],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": _RESPONSE_SCHEMA,
            },
        }
        resp = requests.post(
            GEMINI_URL.format(model=model),
            params={"key": api_key},
            json=body,
            timeout=_timeout(),
        )
        resp.raise_for_status()
        text = resp.json()["candidates"][0]["content"]["parts"][0]["text"]
        raw = json.loads(text.strip())
        # The model occasionally overshoots the declared ranges
        raw["confidenceScore"] = min(max(float(raw["confidenceScore"]), 0.0), 1.0)
        raw["estimatedCarbonPotential"] = max(float(raw["estimatedCarbonPotential"]), 0.0)
        return AIAnalysis.model_validate(raw)
    except (requests.RequestException, KeyError, IndexError, TypeError, ValueError, ValidationError) as e:
        raise ExternalServiceDegraded(f"AI scorer failed: {str(e)[:200]}") from e


def analyze(image_ref: str, ecosystem_type: str) -> AIAnalysis:
    """Score a restoration photo; never raises, returns the fallback when degraded."""
    try:
        return request_analysis(image_ref, ecosystem_type)
    except ExternalServiceDegraded as e:
        logger.warning("Using fallback AI analysis: %s", e)
        return fallback_analysis(ecosystem_type)
