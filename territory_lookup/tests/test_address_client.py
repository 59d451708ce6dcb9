from unittest.mock import MagicMock

import pytest
import requests

from territory_lookup.address_client import AddressMatch, AddressVerificationClient
from territory_lookup.config import Config
from territory_lookup.errors import ErrorCode, ExternalServiceError
from territory_lookup.models import RawAddress

ADDRESS = RawAddress("1234 belt line road", "addison", "TX", "75001", unit="Apt 4")

CANDIDATE = {
    "components": {
        "primary_number": "1234",
        "street_name": "Belt Line",
        "street_suffix": "Rd",
        "secondary_designator": "Apt",
        "secondary_number": "4",
        "city_name": "Addison",
        "state_abbreviation": "TX",
        "zipcode": "75001",
        "plus4_code": "4321",
    },
    "metadata": {"precision": "Zip9"},
}


def _response(status=200, body=None):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = [CANDIDATE] if body is None else body
    return resp


def _client():
    session = MagicMock()
    return AddressVerificationClient("https://verify.example.test/street-address", api_key="auth",
                                     session=session), session


def test_verify_standardizes_address():
    client, session = _client()
    session.get.return_value = _response()
    match = client.verify(ADDRESS)
    assert match.address == RawAddress("1234 Belt Line Rd", "Addison", "TX", "75001", zip4="4321", unit="Apt 4")
    assert match.precision == "Zip9"
    assert match.confidence == "high"

    params = session.get.call_args.kwargs["params"]
    assert params["street"] == "1234 belt line road Apt 4"
    assert params["zipcode"] == "75001"
    assert params["auth-id"] == "auth"


def test_zip4_sent_with_postal_code():
    client, session = _client()
    session.get.return_value = _response()
    client.verify(RawAddress("1 Main St", "Dallas", "TX", "75201", zip4="1234"), timeout=2.0)
    kwargs = session.get.call_args.kwargs
    assert kwargs["params"]["zipcode"] == "75201-1234"
    assert kwargs["timeout"] == 2.0


@pytest.mark.parametrize("precision, confidence", [("Zip7", "high"), ("Zip5", "medium"), ("Street", "low")])
def test_precision_maps_to_confidence(precision, confidence):
    client, session = _client()
    session.get.return_value = _response(body=[dict(CANDIDATE, metadata={"precision": precision})])
    assert client.verify(ADDRESS).confidence == confidence


def test_no_candidate_returns_none():
    client, session = _client()
    session.get.return_value = _response(body=[])
    assert client.verify(ADDRESS) is None
    assert client.breaker.consecutive_failures == 0


@pytest.mark.parametrize("resp", [
    _response(status=401),
    _response(body=[{"components": {}}]),
    _response(body={"unexpected": True}),
])
def test_bad_responses_raise(resp):
    client, session = _client()
    session.get.return_value = resp
    with pytest.raises(ExternalServiceError) as exc:
        client.verify(ADDRESS)
    assert exc.value.code == ErrorCode.EXTERNAL_SERVICE_ERROR


def test_timeout_raises():
    client, session = _client()
    session.get.side_effect = requests.Timeout()
    with pytest.raises(ExternalServiceError) as exc:
        client.verify(ADDRESS)
    assert exc.value.code == ErrorCode.EXTERNAL_SERVICE_TIMEOUT


def test_circuit_breaker_trips():
    client, session = _client()
    session.get.side_effect = requests.ConnectionError("down")
    for _ in range(3):
        with pytest.raises(ExternalServiceError):
            client.verify(ADDRESS)
    assert not client.available


def test_match_dict_roundtrip_keeps_zip4():
    client, session = _client()
    session.get.return_value = _response()
    match = client.verify(ADDRESS)
    restored = AddressMatch.from_dict(match.to_dict())
    assert restored.address == match.address
    assert restored.confidence == "high"


def test_config_reads_address_api_env():
    config = Config.from_env({"ADDRESS_API_URL": "https://verify.example.test", "ADDRESS_API_KEY": "auth"})
    assert config.address_api_url == "https://verify.example.test"
    assert config.address_api_key == "auth"
    assert Config.from_env({}).address_api_url == ""
