"""
DVLA Vehicle Enquiry Service client.
Looks up make, colour, MOT and tax status for a UK registration.
"""
from typing import Any, Dict, Optional

import httpx
import structlog

from ..config import settings

logger = structlog.get_logger(__name__)


class DVLAError(Exception):
    def __init__(self, message: str, status_code: int = 502, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def normalize_vrm(vrm: Optional[str]) -> str:
    """Registration without spaces, upper-cased."""
    return "".join((vrm or "").split()).upper()


class DVLAClient:
    """Client for the DVLA Vehicle Enquiry API"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key or settings.dvla_api_key
        self.base_url = base_url or settings.dvla_ves_url
        self._transport = transport

        if not self.api_key:
            raise ValueError("DVLA API key is required")

    def _request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        with httpx.Client(timeout=30.0, transport=self._transport) as client:
            try:
                response = client.post(self.base_url, json=payload, headers=headers)
            except httpx.HTTPError as e:
                logger.error("dvla_request_error", error=str(e))
                raise DVLAError("DVLA service unreachable", status_code=502) from e
        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = response.text
            logger.warning("dvla_lookup_failed", status=response.status_code)
            raise DVLAError("DVLA lookup failed", status_code=response.status_code, body=body)
        return response.json()

    def lookup(self, vrm: str) -> Dict[str, Any]:
        registration = normalize_vrm(vrm)
        if not registration:
            raise DVLAError("Missing vrm", status_code=400)
        data = self._request({"registrationNumber": registration})
        return {
            "vrm": registration,
            "make": data.get("make"),
            "model": data.get("model"),
            "colour": data.get("colour"),
            "fuel_type": data.get("fuelType"),
            "body_type": data.get("bodyType"),
            "engine_capacity": data.get("engineCapacity"),
            "year_of_manufacture": data.get("yearOfManufacture"),
            "mot_status": data.get("motStatus"),
            "mot_expiry_date": data.get("motExpiryDate"),
            "tax_status": data.get("taxStatus"),
            "tax_due_date": data.get("taxDueDate"),
            "raw": data,
        }
