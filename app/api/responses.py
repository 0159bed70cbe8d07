from __future__ import annotations

from fastapi import Response

from app.domain.models import StoredResponse


def to_stored_response(response: Response) -> StoredResponse:
    """Capture the exact status, header list and body of a rendered response."""
    return StoredResponse(
        status_code=response.status_code,
        headers=tuple((name.decode("latin-1"), value) for name, value in response.raw_headers),
        body=bytes(response.body),
    )


def to_http_response(stored: StoredResponse) -> Response:
    response = Response(content=stored.body, status_code=stored.status_code)
    # Replace the computed headers so the replay matches the stored list exactly.
    response.raw_headers = [(name.encode("latin-1"), value) for name, value in stored.headers]
    return response
