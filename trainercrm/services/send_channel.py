"""Send channels — hand a rendered message to the SMS or email provider."""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from trainercrm.config import get_settings
from trainercrm.models import Contact
from trainercrm.models.message import Message
from trainercrm.services.email import send_email
from trainercrm.services.errors import MessageValidationError, SendChannelError

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class SendReceipt:
    """Provider acknowledgement. Delivery is confirmed later, out of band."""

    provider_message_id: Optional[str] = None
    status: str = "accepted"


class SendChannel:
    name = "base"

    async def send(self, message: Message, contact: Contact) -> SendReceipt:
        raise NotImplementedError


class SmsChannel(SendChannel):
    """REST SMS provider. The message's idempotency key rides along on every attempt."""

    name = "sms"

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client

    async def send(self, message: Message, contact: Contact) -> SendReceipt:
        if not contact.phone:
            raise SendChannelError(f"Contact {contact.id} has no phone number")

        payload = {
            "to": contact.phone,
            "from": settings.sms_from_number,
            "body": message.content,
            "reference": message.id,
        }
        headers = {
            "Authorization": f"Bearer {settings.sms_api_key}",
            "Idempotency-Key": message.idempotency_key,
        }

        try:
            if self._client is not None:
                resp = await self._client.post(settings.sms_api_url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=settings.sms_timeout_seconds) as client:
                    resp = await client.post(settings.sms_api_url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.error(f"SMS transport error for message {message.id}: {exc}")
            raise SendChannelError(f"SMS provider unreachable: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            logger.error(f"SMS provider rejected message {message.id}: {resp.status_code} {resp.text[:200]}")
            raise SendChannelError(f"SMS provider returned {resp.status_code}")

        try:
            body = resp.json()
        except ValueError:
            body = {}
        logger.info(f"SMS accepted for message {message.id}")
        return SendReceipt(
            provider_message_id=body.get("id") or body.get("message_id"),
            status=body.get("status", "accepted"),
        )


class EmailChannel(SendChannel):
    name = "email"

    async def send(self, message: Message, contact: Contact) -> SendReceipt:
        if not contact.email:
            raise SendChannelError(f"Contact {contact.id} has no email address")
        ok = await send_email(
            to_email=contact.email,
            subject="A message from your trainer",
            text_body=message.content,
            headers={"X-Idempotency-Key": message.idempotency_key},
        )
        if not ok:
            raise SendChannelError(f"Email delivery to contact {contact.id} failed")
        return SendReceipt(provider_message_id=message.idempotency_key)


CHANNELS = {
    SmsChannel.name: SmsChannel,
    EmailChannel.name: EmailChannel,
}


def get_send_channel(name: str) -> SendChannel:
    try:
        return CHANNELS[name]()
    except KeyError:
        raise MessageValidationError(f"Unsupported channel: {name}") from None
