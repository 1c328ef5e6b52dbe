import json

import httpx
import pytest

from reminder_dispatcher.services.dispatch_gateway import GatewayError, HttpDispatchGateway, to_chat_id

BASE_URL = "http://gateway.test"


def _gateway(handler) -> HttpDispatchGateway:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return HttpDispatchGateway(base_url=BASE_URL, session="default", client=client)


def test_to_chat_id():
    assert to_chat_id("6281100001") == "6281100001@c.us"
    assert to_chat_id("6281100001@c.us") == "6281100001@c.us"


def test_invalid_base_url_is_rejected():
    with pytest.raises(GatewayError):
        HttpDispatchGateway(base_url="gateway:3000")


@pytest.mark.asyncio
async def test_send_posts_text_payload():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201, json={"id": "msg-1"})

    gateway = _gateway(handler)
    result = await gateway.send("6281100001", "hello")

    assert result.success
    assert requests[0].url.path == "/api/sendText"
    assert json.loads(requests[0].content) == {
        "session": "default",
        "chatId": "6281100001@c.us",
        "text": "hello",
    }
    await gateway.close()


@pytest.mark.asyncio
async def test_send_reports_throttling():
    gateway = _gateway(lambda request: httpx.Response(429))

    result = await gateway.send("6281100001", "hello")

    assert not result.success
    assert result.throttled


@pytest.mark.asyncio
async def test_send_reports_error_status():
    gateway = _gateway(lambda request: httpx.Response(500, text="boom"))

    result = await gateway.send("6281100001", "hello")

    assert not result.success
    assert result.error == "HTTP 500"
    assert not result.throttled


@pytest.mark.asyncio
async def test_send_reports_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    result = await _gateway(handler).send("6281100001", "hello")

    assert not result.success
    assert result.error == "timeout"


@pytest.mark.asyncio
async def test_send_reports_connection_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    result = await _gateway(handler).send("6281100001", "hello")

    assert not result.success


@pytest.mark.asyncio
async def test_refresh_readiness_tracks_session_status():
    status = {"value": "WORKING"}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/sessions/default"
        return httpx.Response(200, json={"status": status["value"]})

    gateway = _gateway(handler)
    assert gateway.is_ready() is False

    assert await gateway.refresh_readiness() is True
    status["value"] = "SCAN_QR_CODE"
    assert await gateway.refresh_readiness() is False


@pytest.mark.asyncio
async def test_refresh_readiness_false_when_unreachable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    gateway = _gateway(handler)
    gateway.mark_ready(True)

    assert await gateway.refresh_readiness() is False


@pytest.mark.asyncio
async def test_refresh_readiness_false_when_status_body_is_not_an_object():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=["WORKING"])

    gateway = _gateway(handler)
    gateway.mark_ready(True)

    assert await gateway.refresh_readiness() is False
