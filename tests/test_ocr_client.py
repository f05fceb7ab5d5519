from unittest.mock import MagicMock

import pytest
import requests

from clipvault.errors import UpstreamError
from clipvault.services.ocr_client import NullOcrClient, VisionOcrClient, build_ocr_client


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


def vision_response(body):
    response = MagicMock()
    response.json.return_value = body
    return response


class TestVisionOcrClient:
    def test_extracts_first_annotation(self, session):
        session.post.return_value = vision_response(
            {"responses": [{"textAnnotations": [{"description": "Hello", "confidence": 0.9}]}]})
        client = VisionOcrClient("key", timeout=3.0, session=session)

        result = client.extract_text(b"\x89PNG")
        assert result.text == "Hello"
        assert result.confidence == 0.9
        kwargs = session.post.call_args.kwargs
        assert kwargs["params"] == {"key": "key"}
        assert kwargs["timeout"] == 3.0
        assert kwargs["json"]["requests"][0]["features"][0]["type"] == "TEXT_DETECTION"

    def test_no_text(self, session):
        session.post.return_value = vision_response({"responses": [{}]})
        result = VisionOcrClient("key", session=session).extract_text(b"img")
        assert result.text == ""
        assert result.has_text is False

    def test_api_error(self, session):
        session.post.return_value = vision_response({"responses": [{"error": {"message": "bad image"}}]})
        with pytest.raises(UpstreamError, match="bad image"):
            VisionOcrClient("key", session=session).extract_text(b"img")

    def test_timeout(self, session):
        session.post.side_effect = requests.Timeout("slow")
        with pytest.raises(UpstreamError, match="timed out"):
            VisionOcrClient("key", session=session).extract_text(b"img")

    def test_http_error(self, session):
        response = vision_response({})
        response.raise_for_status.side_effect = requests.HTTPError("403")
        session.post.return_value = response
        with pytest.raises(UpstreamError):
            VisionOcrClient("key", session=session).extract_text(b"img")


def test_null_client(caplog):
    client = NullOcrClient()
    assert client.enabled is False
    assert client.extract_text(b"img").text == ""
    client.extract_text(b"img")
    assert caplog.text.count("OCR backend not configured") == 1


def test_build_ocr_client():
    assert isinstance(build_ocr_client(None, 5.0), NullOcrClient)
    client = build_ocr_client("key", 5.0)
    assert isinstance(client, VisionOcrClient)
    assert client.timeout == 5.0
