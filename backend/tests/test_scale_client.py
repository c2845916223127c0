# tests/test_scale_client.py
import pytest
import requests

from services.errors import InvalidScaleReading, NoScaleDataAvailable
from services.scale_client import ScaleClient


class FakeResponse:
    def __init__(self, status_code=200, payload=None, content=b"{}"):
        self.status_code = status_code
        self._payload = payload
        self.content = content

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code}")


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        if self.error:
            raise self.error
        return self.response


def client_for(**kw):
    session = FakeSession(**kw)
    return ScaleClient(url="http://scale.local/get_weight", timeout=1.5, session=session), session


def test_reading_is_parsed_from_wire_names():
    payload = {"net_kg": 0.025, "pcs": 10, "unit_weight_g": 2.5,
               "timestamp": "2024-05-01T08:00:00", "serial_no": "SC-01"}
    client, session = client_for(response=FakeResponse(payload=payload))
    r = client.get_current_reading()
    assert (r.netKg, r.pieceCount, r.unitWeightGrams) == (0.025, 10, 2.5)
    assert r.serialNo == "SC-01"
    assert session.calls == [("http://scale.local/get_weight", 1.5)]


def test_no_content_means_no_data():
    client, _ = client_for(response=FakeResponse(status_code=204, content=b""))
    with pytest.raises(NoScaleDataAvailable) as exc:
        client.get_current_reading()
    assert exc.value.message == "No scale data available"


def test_empty_json_means_no_data():
    client, _ = client_for(response=FakeResponse(payload={}))
    with pytest.raises(NoScaleDataAvailable):
        client.get_current_reading()


@pytest.mark.parametrize("error", [
    requests.exceptions.ConnectionError("refused"),
    requests.exceptions.Timeout("slow"),
])
def test_unreachable_scale_is_transient(error):
    client, session = client_for(error=error)
    with pytest.raises(NoScaleDataAvailable):
        client.get_current_reading()
    assert len(session.calls) == 1


def test_malformed_payload_is_invalid():
    client, _ = client_for(response=FakeResponse(payload={"net_kg": "heavy", "pcs": 3}))
    with pytest.raises(InvalidScaleReading):
        client.get_current_reading()


@pytest.mark.parametrize("status", [500, 502, 404])
def test_bridge_error_status_is_transient(status):
    client, _ = client_for(response=FakeResponse(status_code=status, content=b"Bad Gateway"))
    with pytest.raises(NoScaleDataAvailable) as exc:
        client.get_current_reading()
    assert str(status) in exc.value.condition
