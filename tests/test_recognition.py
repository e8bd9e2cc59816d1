from __future__ import annotations

import httpx
import pytest

from autorenewagent.core.errors import RecognitionFailure
from autorenewagent.core.recognition import RecognitionClient, RecognitionResult

ENDPOINT = "https://captcha.example.test/"


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_posts_raw_data_uri_and_strips_result():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["body"] = request.content.decode()
        return httpx.Response(200, text=" 4821\n")

    client = RecognitionClient(ENDPOINT, timeout_seconds=5, client=_client(handler))
    result = client.recognize("data:image/png;base64,AAAA")

    assert result == RecognitionResult(code="4821", length=4)
    assert result.is_valid()
    assert seen == {"method": "POST", "body": "data:image/png;base64,AAAA"}


def test_short_result_is_returned_but_invalid():
    client = RecognitionClient(
        ENDPOINT, client=_client(lambda request: httpx.Response(200, text="123"))
    )
    result = client.recognize("data:image/png;base64,AAAA")
    assert result.length == 3
    assert not result.is_valid(4)


def test_http_error_status_is_recognition_failure():
    client = RecognitionClient(
        ENDPOINT, client=_client(lambda request: httpx.Response(503, text="busy"))
    )
    with pytest.raises(RecognitionFailure):
        client.recognize("data:...")


def test_empty_body_is_recognition_failure():
    client = RecognitionClient(
        ENDPOINT, client=_client(lambda request: httpx.Response(200, text=""))
    )
    with pytest.raises(RecognitionFailure):
        client.recognize("data:...")


def test_transport_error_is_recognition_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = RecognitionClient(ENDPOINT, client=_client(handler))
    with pytest.raises(RecognitionFailure):
        client.recognize("data:...")
