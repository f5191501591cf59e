import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from urllib.parse import parse_qs

import httpx
import pytest

from connectors.base import AuthorizationError, BoundingBox, PollOutcome
from connectors.credentials import CredentialStore, OAuthCredentials
from connectors.netatmo import NetatmoConnector, decode_response, to_canonical
from datastore.mock_timeseries import MockTimeSeriesCollection
from models.readings import Provider

FIXTURE = Path(__file__).parent / "fixtures" / "netatmo_response.json"
DATA_URL = "https://api.netatmo.test/api/getpublicdata"
TOKEN_URL = "https://api.netatmo.test/oauth2/token"
BBOX = BoundingBox(lat_min=53.2778, lat_max=53.796, lon_min=9.6693, lon_max=10.3556)
NOW = datetime(2024, 6, 5, 10, 0, tzinfo=timezone.utc)


def _payload() -> dict:
    return json.loads(FIXTURE.read_text())


def _single_station_payload() -> dict:
    return {
        "status": "ok",
        "time_server": 1717582500,
        "body": [
            {
                "_id": "70:ee:50:aa:bb:cc",
                "place": {"location": [9.99, 53.55], "altitude": 14, "country": "DE"},
                "measures": {
                    "02:00:00:aa:bb:cc": {
                        "type": ["temperature", "humidity"],
                        "res": {"device1": [21.5, 60.0]},
                    },
                    "06:00:00:aa:bb:cc": {"wind_strength": 4, "wind_angle": 180},
                },
            }
        ],
    }


def _credentials(expires_at=None) -> CredentialStore:
    return CredentialStore(
        OAuthCredentials(
            access_token="old-access",
            refresh_token="old-refresh",
            client_id="client-id",
            client_secret="client-secret",
            expires_at=expires_at,
        ),
        token_url=TOKEN_URL,
        clock=lambda: NOW,
    )


def _token_response() -> httpx.Response:
    return httpx.Response(
        200,
        json={"access_token": "new-access", "expires_in": 10800, "refresh_token": "new-refresh"},
    )


def _connector(handler, credentials: CredentialStore, collection) -> NetatmoConnector:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NetatmoConnector(
        client=client,
        sink=collection,
        credentials=credentials,
        url=DATA_URL,
        bbox=BBOX,
    )


def test_fixture_maps_to_48_readings() -> None:
    readings = to_canonical(decode_response(_payload()))

    assert len(readings) == 48
    assert all(reading.provider is Provider.netatmo for reading in readings)
    assert all(reading.has_measurement() for reading in readings)
    server_time = datetime.fromtimestamp(1717582500, tz=timezone.utc)
    assert {reading.timestamp for reading in readings} == {server_time}
    assert len({reading.id for reading in readings}) == 48


def test_fixture_counts_per_quantity() -> None:
    readings = to_canonical(decode_response(_payload()))

    temperatures = [r for r in readings if r.temperature is not None]
    humidities = [r for r in readings if r.humidity is not None]
    pressures = [r for r in readings if r.pressure is not None]

    assert (len(temperatures), len(humidities), len(pressures)) == (18, 18, 12)


def test_positional_values_become_one_reading_each() -> None:
    readings = to_canonical(decode_response(_single_station_payload()))

    assert len(readings) == 2
    temperature, humidity = readings
    assert temperature.temperature == 21.5
    assert temperature.humidity is None
    assert humidity.humidity == 60.0
    assert humidity.temperature is None
    for reading in readings:
        assert reading.timestamp == datetime(2024, 6, 5, 10, 15, tzinfo=timezone.utc)
        assert reading.location.latitude == 53.55
        assert reading.location.longitude == 9.99
        assert reading.location.altitude == 14
        assert reading.provider_sensor_id == "02:00:00:aa:bb:cc"


def test_pressure_from_string_and_unsupported_types_discarded() -> None:
    payload = _single_station_payload()
    payload["body"][0]["measures"] = {
        "70:ee:50:aa:bb:cc": {"type": "pressure", "res": {"1717582200": ["1012.4"]}},
        "02:00:00:aa:bb:cc": {
            "type": ["temperature", "rain", "humidity"],
            "res": {"1717582200": [18.0, 0.4, 70, 99]},
        },
    }

    readings = to_canonical(decode_response(payload))

    assert [r.pressure for r in readings if r.pressure is not None] == [1012.4]
    assert [r.temperature for r in readings if r.temperature is not None] == [18.0]
    assert [r.humidity for r in readings if r.humidity is not None] == [70.0]
    assert len(readings) == 3


def test_missing_place_components_fall_back_to_zero() -> None:
    payload = _single_station_payload()
    payload["body"][0]["place"] = {"location": [9.99]}

    readings = to_canonical(decode_response(payload))

    assert readings[0].location.longitude == 9.99
    assert readings[0].location.latitude == 0.0
    assert readings[0].location.altitude == 0.0


def test_poll_sends_bearer_token_and_box_query() -> None:
    collection = MockTimeSeriesCollection(name="test")
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=_payload())

    connector = _connector(handler, _credentials(), collection)
    result = asyncio.run(connector.poll())

    assert result.outcome is PollOutcome.succeeded
    assert result.reading_count == 48
    assert collection.count() == 48
    (request,) = requests
    assert request.headers["Authorization"] == "Bearer old-access"
    assert request.url.params["lat_ne"] == "53.796"
    assert request.url.params["lon_sw"] == "9.6693"
    assert request.url.params["filter"] == "false"


@pytest.mark.parametrize("rejection_status", [400, 401, 403])
def test_rejected_token_is_refreshed_and_request_retried_once(rejection_status) -> None:
    collection = MockTimeSeriesCollection(name="test")
    credentials = _credentials()
    calls: list[str] = []
    refresh_bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url == TOKEN_URL:
            calls.append("refresh")
            refresh_bodies.append(parse_qs(request.content.decode()))
            return _token_response()
        calls.append(request.headers["Authorization"])
        if request.headers["Authorization"] == "Bearer old-access":
            return httpx.Response(rejection_status, json={"error": {"code": 3}})
        return httpx.Response(200, json=_single_station_payload())

    result = asyncio.run(_connector(handler, credentials, collection).poll())

    assert result.ok
    assert calls == ["Bearer old-access", "refresh", "Bearer new-access"]
    assert refresh_bodies == [
        {
            "grant_type": ["refresh_token"],
            "refresh_token": ["old-refresh"],
            "client_id": ["client-id"],
            "client_secret": ["client-secret"],
        }
    ]
    assert credentials.credentials.access_token == "new-access"
    assert credentials.credentials.refresh_token == "new-refresh"
    assert credentials.credentials.expires_at == NOW + timedelta(seconds=10800)
    assert collection.count() == 2


def test_failed_refresh_aborts_poll_without_writes() -> None:
    collection = MockTimeSeriesCollection(name="test")
    credentials = _credentials()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url == TOKEN_URL:
            return httpx.Response(400, json={"error": "invalid_grant"})
        return httpx.Response(401)

    result = asyncio.run(_connector(handler, credentials, collection).poll())

    assert result.outcome is PollOutcome.failed
    assert "refresh" in (result.error or "")
    assert credentials.access_token == "old-access"
    assert collection.count() == 0


def test_retry_still_rejected_aborts_poll() -> None:
    collection = MockTimeSeriesCollection(name="test")
    data_calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url == TOKEN_URL:
            return _token_response()
        data_calls.append(request.headers["Authorization"])
        return httpx.Response(403)

    result = asyncio.run(_connector(handler, _credentials(), collection).poll())

    assert result.outcome is PollOutcome.failed
    assert "despite access token refresh" in (result.error or "")
    assert len(data_calls) == 2
    assert collection.count() == 0


def test_expired_token_is_refreshed_before_request() -> None:
    collection = MockTimeSeriesCollection(name="test")
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url == TOKEN_URL:
            calls.append("refresh")
            return _token_response()
        calls.append(request.headers["Authorization"])
        return httpx.Response(200, json=_single_station_payload())

    credentials = _credentials(expires_at=NOW - timedelta(minutes=1))
    result = asyncio.run(_connector(handler, credentials, collection).poll())

    assert result.ok
    assert calls == ["refresh", "Bearer new-access"]


def test_concurrent_refreshes_exchange_token_once() -> None:
    credentials = _credentials()
    refreshes: list[int] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        refreshes.append(1)
        await asyncio.sleep(0.01)
        return _token_response()

    async def scenario() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await asyncio.gather(
                credentials.refresh(client, "old-access"),
                credentials.refresh(client, "old-access"),
            )

    asyncio.run(scenario())

    assert len(refreshes) == 1
    assert credentials.refresh_count == 1
    assert credentials.access_token == "new-access"


def test_invalid_token_payload_raises_authorization_error() -> None:
    credentials = _credentials()

    async def scenario() -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"nope": 1}))
        async with httpx.AsyncClient(transport=transport) as client:
            await credentials.refresh(client, "old-access")

    with pytest.raises(AuthorizationError):
        asyncio.run(scenario())
    assert credentials.access_token == "old-access"


def test_malformed_payload_is_contained() -> None:
    collection = MockTimeSeriesCollection(name="test")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "ok", "body": []})

    result = asyncio.run(_connector(handler, _credentials(), collection).poll())

    assert result.outcome is PollOutcome.failed
    assert collection.count() == 0


def test_poll_propagates_cancellation() -> None:
    collection = MockTimeSeriesCollection(name="test")

    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(10)
        return httpx.Response(200, json=_payload())

    async def scenario() -> None:
        task = asyncio.create_task(_connector(handler, _credentials(), collection).poll())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())
    assert collection.count() == 0
