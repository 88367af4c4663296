"""Unit tests for the error taxonomy: hierarchy, HTTP status hints and bodies."""

from __future__ import annotations

import pytest

from apiproxy.errors import (
    APIClientError,
    BodyDecodeError,
    EncodeError,
    InterceptorError,
    RequestBuildError,
    StreamCopyError,
    TransportError,
    TransportTimeoutError,
    UploadTooLargeError,
    URLParseError,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "error_cls",
        [
            URLParseError,
            RequestBuildError,
            TransportError,
            TransportTimeoutError,
            BodyDecodeError,
            UploadTooLargeError,
            InterceptorError,
            EncodeError,
            StreamCopyError,
        ],
    )
    def test_every_error_is_an_api_client_error(self, error_cls: type) -> None:
        assert issubclass(error_cls, APIClientError)

    def test_timeout_is_a_transport_error(self) -> None:
        assert issubclass(TransportTimeoutError, TransportError)

    def test_upload_too_large_is_a_body_decode_error(self) -> None:
        assert issubclass(UploadTooLargeError, BodyDecodeError)

    def test_stream_copy_is_not_a_transport_error(self) -> None:
        assert not issubclass(StreamCopyError, TransportError)


class TestHttpStatusHints:
    @pytest.mark.parametrize(
        "error, status",
        [
            (URLParseError("x"), 500),
            (RequestBuildError("x"), 500),
            (TransportError("x"), 502),
            (TransportTimeoutError("x"), 504),
            (BodyDecodeError("x"), 400),
            (UploadTooLargeError(10), 413),
            (InterceptorError("hook", "x"), 422),
            (EncodeError("x"), 500),
            (StreamCopyError("x"), 502),
        ],
    )
    def test_status(self, error: APIClientError, status: int) -> None:
        assert error.http_status == status


class TestErrorBodies:
    def test_to_dict_carries_message_and_code(self) -> None:
        body = TransportError("upstream refused connection").to_dict()
        assert body == {
            "error": {"message": "upstream refused connection", "code": "upstream_unavailable"}
        }

    def test_to_dict_falls_back_to_code_without_message(self) -> None:
        assert EncodeError().to_dict()["error"]["message"] == "encode_error"

    def test_to_dict_never_includes_cause(self) -> None:
        try:
            try:
                raise OSError("secret socket detail")
            except OSError as exc:
                raise TransportError("upstream failed") from exc
        except TransportError as err:
            assert "secret" not in str(err.to_dict())

    def test_upload_too_large_records_limit_and_size(self) -> None:
        err = UploadTooLargeError(1024, 4096)
        assert err.limit == 1024
        assert err.size == 4096
        assert "4096" in str(err) and "1024" in str(err)

    def test_upload_too_large_without_size(self) -> None:
        err = UploadTooLargeError(1024)
        assert err.size is None
        assert "1024" in str(err)

    def test_interceptor_error_names_the_hook(self) -> None:
        err = InterceptorError("request_json_interceptor", "tenant missing")
        assert err.hook == "request_json_interceptor"
        assert str(err) == "request_json_interceptor failed: tenant missing"
