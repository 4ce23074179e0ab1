"""Tests for the HTTP transport and status classification."""

from __future__ import annotations

import gzip
from unittest.mock import MagicMock

import pytest
import requests

from trackline.errors import TransportError
from trackline.transport import (
    RequestsTransport,
    classify_status,
    endpoint_for,
    is_retryable_status,
    normalize_server_url,
)


class TestServerUrl:
    def test_adds_https_scheme(self):
        assert normalize_server_url("inputs.example.com/") == "https://inputs.example.com"

    def test_keeps_explicit_scheme(self):
        assert normalize_server_url("http://localhost:8000") == "http://localhost:8000"

    def test_endpoint(self):
        assert endpoint_for("https://inputs.example.com/") == "https://inputs.example.com/track/"


class TestClassification:
    """Test retryable vs permanent HTTP outcomes."""

    @pytest.mark.parametrize("status", [200, 201, 202, 204])
    def test_success(self, status):
        assert classify_status(status).status_code == status

    @pytest.mark.parametrize("status", [401, 403, 408, 425, 429, 500, 502, 503])
    def test_retryable(self, status):
        assert is_retryable_status(status)
        with pytest.raises(TransportError) as exc_info:
            classify_status(status)
        assert exc_info.value.retryable
        assert exc_info.value.status_code == status

    @pytest.mark.parametrize("status", [400, 404, 413, 422])
    def test_permanent(self, status):
        with pytest.raises(TransportError) as exc_info:
            classify_status(status)
        assert exc_info.value.permanent


def _session(status_code: int = 200, side_effect=None) -> MagicMock:
    session = MagicMock(spec=requests.Session)
    if side_effect is not None:
        session.post.side_effect = side_effect
    else:
        response = MagicMock()
        response.status_code = status_code
        response.text = "ok"
        session.post.return_value = response
    return session


class TestRequestsTransport:
    """Test the requests-based transport with a mocked session."""

    def test_posts_gzipped_payload(self):
        session = _session()
        transport = RequestsTransport(timeout=12.0, session=session)

        ack = transport.submit("https://inputs.example.com/track/", b'{"events":[]}')

        assert ack.status_code == 200
        args, kwargs = session.post.call_args
        assert args == ("https://inputs.example.com/track/",)
        assert gzip.decompress(kwargs["data"]) == b'{"events":[]}'
        assert kwargs["headers"]["Content-Encoding"] == "gzip"
        assert kwargs["timeout"] == 12.0

    def test_timeout_is_retryable(self):
        transport = RequestsTransport(session=_session(side_effect=requests.exceptions.Timeout("slow")))
        with pytest.raises(TransportError, match="timeout") as exc_info:
            transport.submit("https://x/track/", b"{}")
        assert exc_info.value.retryable

    def test_connection_error_is_retryable(self):
        transport = RequestsTransport(
            session=_session(side_effect=requests.exceptions.ConnectionError("refused"))
        )
        with pytest.raises(TransportError) as exc_info:
            transport.submit("https://x/track/", b"{}")
        assert exc_info.value.retryable
        assert exc_info.value.status_code is None

    def test_rejection_raises(self):
        transport = RequestsTransport(session=_session(status_code=400))
        with pytest.raises(TransportError) as exc_info:
            transport.submit("https://x/track/", b"{}")
        assert exc_info.value.permanent

    def test_close_closes_session(self):
        session = _session()
        RequestsTransport(session=session).close()
        session.close.assert_called_once()
