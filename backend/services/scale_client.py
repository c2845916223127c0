# services/scale_client.py
"""
Counting-scale bridge client.

The bridge answers ``GET /get_weight`` with the current reading, or 204 when
the scale has nothing to report. Retrying is the operator's job (press scan
again), so there is no retry loop here.
"""
from __future__ import annotations

import logging
from typing import Optional

import requests
from pydantic import ValidationError

from core.config import settings
from models.bin_models import ScaleReading
from services.errors import InvalidScaleReading, NoScaleDataAvailable

logger = logging.getLogger(__name__)


class ScaleClient:
    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        self.url = url or settings.SCALE_URL
        self.timeout = timeout if timeout is not None else settings.SCALE_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def get_current_reading(self) -> ScaleReading:
        try:
            r = self.session.get(self.url, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise NoScaleDataAvailable(self.url, "scale did not answer in time")
        except requests.exceptions.RequestException as e:
            logger.warning("scale bridge unreachable at %s: %s", self.url, e)
            raise NoScaleDataAvailable(self.url, "scale bridge unreachable")

        if r.status_code == 204 or not r.content:
            raise NoScaleDataAvailable(self.url)
        try:
            r.raise_for_status()
        except requests.HTTPError:
            logger.warning("scale bridge at %s answered %s", self.url, r.status_code)
            raise NoScaleDataAvailable(self.url, f"scale bridge answered {r.status_code}")

        try:
            data = r.json()
        except ValueError:
            raise NoScaleDataAvailable(self.url, "scale returned a non-JSON body")
        if not data:
            raise NoScaleDataAvailable(self.url)

        try:
            return ScaleReading(
                netKg=data.get("net_kg"),
                pieceCount=data.get("pcs"),
                unitWeightGrams=data.get("unit_weight_g"),
                timestamp=data.get("timestamp"),
                serialNo=data.get("serial_no"),
            )
        except ValidationError:
            raise InvalidScaleReading(self.url, f"malformed scale payload: {data!r}")


def get_scale_client() -> ScaleClient:
    """FastAPI dependency"""
    return ScaleClient()
