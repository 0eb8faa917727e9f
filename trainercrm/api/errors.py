"""Map outreach errors onto HTTP responses."""

from fastapi import HTTPException

from trainercrm.services.errors import FrequencyCapExceededError, OutreachError


def to_http(exc: OutreachError) -> HTTPException:
    headers = None
    if isinstance(exc, FrequencyCapExceededError):
        # seconds; the cap window is a rolling day
        headers = {"Retry-After": "86400"}
    return HTTPException(exc.status_code, exc.to_dict(), headers=headers)
