"""Outbound and inbound WhatsApp Cloud API plumbing.

Sending never raises: delivery and retries belong to the messaging
platform, so failures are logged and reported as ``False``.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from backend.core import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IncomingWhatsAppMessage:
    message_id: str
    from_number: str
    to_number: str
    text: str
    sender_name: str | None = None


def parse_webhook_payload(payload: dict[str, Any]) -> list[IncomingWhatsAppMessage]:
    """Text messages contained in a Meta webhook delivery; other kinds are skipped."""
    messages: list[IncomingWhatsAppMessage] = []

    for entry in payload.get('entry') or []:
        for change in entry.get('changes') or []:
            value = change.get('value') or {}
            to_number = (value.get('metadata') or {}).get('display_phone_number', '')
            names = {
                contact.get('wa_id'): (contact.get('profile') or {}).get('name')
                for contact in value.get('contacts') or []
            }

            for message in value.get('messages') or []:
                if message.get('type') != 'text':
                    continue
                body = ((message.get('text') or {}).get('body') or '').strip()
                if not body:
                    continue
                sender = message.get('from', '')
                messages.append(
                    IncomingWhatsAppMessage(
                        message_id=message.get('id', ''),
                        from_number=sender,
                        to_number=to_number,
                        text=body,
                        sender_name=names.get(sender),
                    )
                )

    return messages


def verify_webhook(mode: str | None, token: str | None, challenge: str | None) -> str | None:
    if mode == 'subscribe' and token and token == config.WHATSAPP_VERIFY_TOKEN:
        return challenge
    return None


class WhatsAppService:
    def __init__(
        self,
        base_url: str = config.WHATSAPP_API_BASE,
        version: str = config.WHATSAPP_API_VERSION,
        phone_number_id: str = config.WHATSAPP_PHONE_NUMBER_ID,
        access_token: str = config.WHATSAPP_ACCESS_TOKEN,
        timeout_seconds: float = config.MESSAGING_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip('/')
        self.version = version
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)

    def _message_url(self) -> str:
        return f'{self.base_url}/{self.version}/{self.phone_number_id}/messages'

    def _post(self, payload: dict[str, Any]) -> bool:
        if not self.is_configured:
            logger.warning('WhatsApp is not configured; dropping outbound message')
            return False

        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = client.post(
                    self._message_url(),
                    headers={
                        'Authorization': f'Bearer {self.access_token}',
                        'Content-Type': 'application/json',
                    },
                    json=payload,
                )
        except httpx.TimeoutException:
            logger.error('Timeout talking to WhatsApp API')
            return False
        except httpx.HTTPError as exc:
            logger.error('WhatsApp API request failed: %s', exc)
            return False

        if response.status_code != 200:
            logger.error('WhatsApp API error %s: %s', response.status_code, response.text)
            return False

        return True

    def send_text(self, to: str, body: str) -> bool:
        if not to or not body:
            return False
        return self._post({
            'messaging_product': 'whatsapp',
            'to': to,
            'type': 'text',
            'text': {'body': body},
        })

    def send_appointment_confirmation(self, to: str, patient_name: str, slot_label: str, appointment_type: str) -> bool:
        body = (
            f'Hello {patient_name}, your {appointment_type} is confirmed for {slot_label}. '
            'Reply to this message if you need to change it.'
        )
        return self.send_text(to, body)

    def send_alternative_slots(self, to: str, slot_labels: list[str]) -> bool:
        if slot_labels:
            options = '\n'.join(f'- {label}' for label in slot_labels)
            body = f'Sorry, that time is no longer available. Please choose another:\n{options}'
        else:
            body = 'Sorry, that time is no longer available and there are no open times right now. A member of our team will contact you.'
        return self.send_text(to, body)

    def mark_as_read(self, message_id: str) -> bool:
        if not message_id:
            return False
        return self._post({
            'messaging_product': 'whatsapp',
            'status': 'read',
            'message_id': message_id,
        })


_whatsapp_service = WhatsAppService()


def get_messenger() -> WhatsAppService:
    return _whatsapp_service
