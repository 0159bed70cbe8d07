import pytest

from app.api.handlers.newsletters import ACCEPTED_DETAIL, render_accepted_response
from app.api.responses import to_http_response
from app.domain.errors import DomainInvariantError
from app.lib.responses import decode_headers, encode_headers


@pytest.mark.unit
def test_header_codec_preserves_order_duplicates_and_raw_bytes() -> None:
    headers = (
        ("set-cookie", b"a=1"),
        ("set-cookie", b"b=2"),
        ("x-binary", b"\xff\x00\xfe"),
    )

    assert decode_headers(encode_headers(headers)) == headers


@pytest.mark.unit
@pytest.mark.parametrize(
    "payload",
    [
        b"not json",
        b'{"items": [{"name": "x", "value_b64": "!!!"}]}',
        b'{"items": [], "schema_version": "headers:v0"}',
    ],
)
def test_header_codec_rejects_malformed_payloads(payload: bytes) -> None:
    with pytest.raises(DomainInvariantError) as exc_info:
        decode_headers(payload)

    assert "stored headers" in str(exc_info.value)


@pytest.mark.unit
def test_header_codec_chains_the_parse_failure() -> None:
    with pytest.raises(DomainInvariantError) as exc_info:
        decode_headers(b"not json")

    assert exc_info.value.__cause__ is not None


@pytest.mark.unit
def test_accepted_response_replays_byte_for_byte() -> None:
    stored = render_accepted_response("iss_01HZY3A1B2C3D4E5F6G7H8J9KM")

    assert stored.status_code == 200
    assert b'"newsletter_issue_id":"iss_01HZY3A1B2C3D4E5F6G7H8J9KM"' in stored.body
    assert ACCEPTED_DETAIL.encode("utf-8") in stored.body
    assert ("content-type", b"application/json") in stored.headers

    replayed = to_http_response(stored)

    assert replayed.status_code == stored.status_code
    assert replayed.body == stored.body
    assert replayed.raw_headers == [(name.encode("latin-1"), value) for name, value in stored.headers]
