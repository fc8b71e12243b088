"""Client for the external text-understanding collaborator.

The collaborator is any OpenAI-compatible chat-completions endpoint running
in JSON mode. Its answer is parsed into a BookingIntent, which the booking
code treats as a suggestion only.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import date, time

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from backend.core import config
from backend.core.errors import UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)

URGENCY_LEVELS = ('low', 'normal', 'high')

# Runs collaborator calls so the caller can stop waiting at a hard deadline.
_request_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix='intent-client')

SYSTEM_PROMPT = (
    'You are the scheduling assistant of a telemedicine clinic. '
    'Read the patient message and decide whether it asks to book an appointment. '
    'When it does, pick at most one slot from the list of available slots, copying its label exactly. '
    'Never invent a slot that is not in the list. '
    'If the request is ambiguous, urgent, or needs clinical judgement, set requires_human to true. '
    'Answer only with a JSON object with the keys: is_booking_request (bool), matched_slot (string or null), '
    'requested_date (YYYY-MM-DD or null), requested_time (HH:MM or null), appointment_type (string or null), '
    'urgency (low|normal|high), confidence (0..1), requires_human (bool), response (string for the patient).'
)


class BookingIntent(BaseModel):
    source_text: str = ''
    is_booking_request: bool = False
    matched_slot: str | None = None
    requested_date: date | None = None
    requested_time: time | None = None
    appointment_type: str | None = None
    urgency: str = 'normal'
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    requires_human: bool = False
    response: str = ''

    @field_validator('matched_slot', 'appointment_type')
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None

    @field_validator('urgency')
    @classmethod
    def validate_urgency(cls, value: str) -> str:
        normalized = (value or 'normal').strip().lower()
        return normalized if normalized in URGENCY_LEVELS else 'normal'


def build_user_prompt(message: str, candidate_labels: list[str], context: str | None = None) -> str:
    lines = [f'Patient message: "{message}"']
    if context:
        lines.append(f'Previous conversation: {context}')
    if candidate_labels:
        lines.append('Available slots: ' + '; '.join(candidate_labels))
    else:
        lines.append('Available slots: none')
    return '\n'.join(lines)


class IntentClient:
    def __init__(
        self,
        api_url: str = config.INTENT_API_URL,
        api_key: str = config.INTENT_API_KEY,
        model: str = config.INTENT_MODEL,
        timeout_seconds: float = config.INTENT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_url = api_url.rstrip('/')
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def analyze(self, message: str, candidate_labels: list[str], context: str | None = None) -> BookingIntent:
        payload = {
            'model': self.model,
            'messages': [
                {'role': 'system', 'content': SYSTEM_PROMPT},
                {'role': 'user', 'content': build_user_prompt(message, candidate_labels, context)},
            ],
            'response_format': {'type': 'json_object'},
            'temperature': 0,
        }

        # httpx timeouts apply per connect/read/write phase; the future bounds the whole call.
        future = _request_executor.submit(self._post, payload)
        try:
            data = future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError as exc:
            future.cancel()
            logger.warning('Intent collaborator missed the %ss deadline', self.timeout_seconds)
            raise UpstreamTimeoutError('Text-understanding service timed out.') from exc
        except httpx.TimeoutException as exc:
            logger.warning('Intent collaborator timed out after %ss', self.timeout_seconds)
            raise UpstreamTimeoutError('Text-understanding service timed out.') from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning('Intent collaborator request failed: %s', exc)
            raise UpstreamError('Text-understanding service request failed.') from exc

        try:
            content = data['choices'][0]['message']['content']
            parsed = json.loads(content or '{}')
            return BookingIntent.model_validate({**parsed, 'source_text': message})
        except (KeyError, IndexError, TypeError, ValueError, ValidationError) as exc:
            logger.warning('Intent collaborator returned an unusable answer: %s', exc)
            raise UpstreamError('Text-understanding service returned an unusable answer.') from exc

    def _post(self, payload: dict) -> dict:
        with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
            response = client.post(
                f'{self.api_url}/chat/completions',
                headers={
                    'Authorization': f'Bearer {self.api_key}',
                    'Content-Type': 'application/json',
                },
                json=payload,
            )
            response.raise_for_status()
            return response.json()


_intent_client = IntentClient()


def get_intent_client() -> IntentClient:
    return _intent_client
