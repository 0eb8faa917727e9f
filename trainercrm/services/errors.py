"""Outreach pipeline errors.

Each error carries the HTTP status the API answers with and a retry hint so
callers can tell "try later" (rate limit) from "retry now" (transient) from
"fix input" (validation).
"""

RETRY_LATER = "later"
RETRY_NOW = "now"
FIX_INPUT = "fix_input"


class OutreachError(Exception):
    status_code = 500
    code = "outreach_error"
    retry = RETRY_NOW

    def to_dict(self) -> dict:
        return {"error": self.code, "message": str(self), "retry": self.retry}


class SignalFetchError(OutreachError):
    """Contacts, insights or bookings could not be read; the run is aborted."""

    status_code = 503
    code = "signals_unavailable"


class RunInProgressError(OutreachError):
    status_code = 409
    code = "run_in_progress"
    retry = RETRY_LATER


class MessageNotFoundError(OutreachError):
    status_code = 404
    code = "message_not_found"
    retry = FIX_INPUT


class InvalidMessageStateError(OutreachError):
    status_code = 409
    code = "invalid_message_state"
    retry = FIX_INPUT


class MessageValidationError(OutreachError):
    status_code = 422
    code = "invalid_message"
    retry = FIX_INPUT


class ContactOptedOutError(OutreachError):
    status_code = 400
    code = "contact_opted_out"
    retry = FIX_INPUT


class FrequencyCapExceededError(OutreachError):
    """Recipient reached its send cap. Not retried automatically."""

    status_code = 429
    code = "frequency_cap_exceeded"
    retry = RETRY_LATER

    def __init__(self, message: str, limit: str = "daily"):
        super().__init__(message)
        self.limit = limit

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["limit"] = self.limit
        data["message"] = f"{self} Try again tomorrow."
        return data


class SendChannelError(OutreachError):
    """Transport-level failure talking to the SMS/email provider."""

    status_code = 502
    code = "send_channel_failed"
    retry = RETRY_NOW
