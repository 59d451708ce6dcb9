from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest
import requests

from territory_lookup.errors import ErrorCode, ExternalServiceError
from territory_lookup.esid_client import EsidClient
from territory_lookup.models import RawAddress
from territory_lookup.normalizer import normalize

ADDRESS = normalize(RawAddress("1234 Belt Line Road", "Addison", "TX", "75001", zip4="1234"))


def _response(status=200, body=None):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body if body is not None else {
        "esid": "10443720001234567", "tdsp_duns": "007929441", "confidence": 0.93,
    }
    return resp


def _client(**kw):
    session = MagicMock()
    return EsidClient("https://esid.example.test/lookup", api_key="secret", session=session, **kw), session


def test_successful_lookup():
    client, session = _client()
    session.get.return_value = _response()
    match = client.lookup(ADDRESS)
    assert match.esid == "10443720001234567"
    assert match.registry_number == "007929441"
    assert match.confidence == 0.93

    _, kwargs = session.get.call_args
    assert kwargs["params"] == {
        "street": "1234 Belt Line Road", "city": "Addison", "state": "TX", "zip": "75001", "zip4": "1234",
    }
    assert kwargs["headers"]["Authorization"] == "Bearer secret"
    assert kwargs["timeout"] == 5.0


def test_timeout_is_capped_by_caller():
    client, session = _client()
    session.get.return_value = _response()
    client.lookup(ADDRESS, timeout=1.5)
    assert session.get.call_args.kwargs["timeout"] == 1.5


def test_timeout_raises_external_error():
    client, session = _client()
    session.get.side_effect = requests.Timeout()
    with pytest.raises(ExternalServiceError) as exc:
        client.lookup(ADDRESS)
    assert exc.value.code == ErrorCode.EXTERNAL_SERVICE_TIMEOUT


@pytest.mark.parametrize("resp", [
    _response(status=503),
    _response(body={"esid": "x"}),
])
def test_bad_responses_raise(resp):
    client, session = _client()
    session.get.return_value = resp
    with pytest.raises(ExternalServiceError) as exc:
        client.lookup(ADDRESS)
    assert exc.value.code == ErrorCode.EXTERNAL_SERVICE_ERROR


def test_malformed_json_raises():
    client, session = _client()
    resp = _response()
    resp.json.side_effect = ValueError("not json")
    session.get.return_value = resp
    with pytest.raises(ExternalServiceError):
        client.lookup(ADDRESS)


def test_circuit_breaker_trips_and_resets():
    client, session = _client()
    session.get.side_effect = requests.ConnectionError("down")
    for _ in range(3):
        with pytest.raises(ExternalServiceError):
            client.lookup(ADDRESS)
    assert not client.available

    # Pretend the disable window has passed
    client.breaker.last_failure_time -= 301
    assert client.available


def test_success_resets_failure_count():
    client, session = _client()
    session.get.side_effect = [requests.ConnectionError("down"), requests.ConnectionError("down"), _response()]
    for _ in range(2):
        with pytest.raises(ExternalServiceError):
            client.lookup(ADDRESS)
    client.lookup(ADDRESS)
    assert client.breaker.consecutive_failures == 0
    assert client.available


def test_concurrent_failures_are_all_counted():
    client, session = _client()
    session.get.side_effect = requests.ConnectionError("down")

    def fail(_):
        with pytest.raises(ExternalServiceError):
            client.lookup(ADDRESS)

    with ThreadPoolExecutor(max_workers=16) as pool:
        list(pool.map(fail, range(64)))

    assert client.breaker.consecutive_failures == 64
    assert not client.available
