import json
import threading
import time

import httpx
import pytest

from backend.core.errors import UpstreamError, UpstreamTimeoutError
from backend.services.intent_service import BookingIntent, IntentClient, build_user_prompt


def _client(handler) -> IntentClient:
    return IntentClient(
        api_url='https://llm.example/v1/',
        api_key='test-key',
        model='test-model',
        timeout_seconds=2,
        transport=httpx.MockTransport(handler),
    )


def _completion(content: str) -> dict:
    return {'choices': [{'message': {'content': content}}]}


def test_build_user_prompt_lists_candidates_and_context() -> None:
    prompt = build_user_prompt('Monday please', ['05/01/2026 at 09:00', '05/01/2026 at 09:30'], 'patient: hi')

    assert 'Patient message: "Monday please"' in prompt
    assert 'Previous conversation: patient: hi' in prompt
    assert 'Available slots: 05/01/2026 at 09:00; 05/01/2026 at 09:30' in prompt


def test_build_user_prompt_without_candidates() -> None:
    assert 'Available slots: none' in build_user_prompt('hello', [])


def test_analyze_parses_json_answer() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured['url'] = str(request.url)
        captured['auth'] = request.headers['authorization']
        captured['body'] = json.loads(request.content)
        return httpx.Response(200, json=_completion(json.dumps({
            'is_booking_request': True,
            'matched_slot': '05/01/2026 at 09:00',
            'requested_date': '2026-01-05',
            'requested_time': '09:00',
            'appointment_type': 'consultation',
            'urgency': 'HIGH',
            'confidence': 0.9,
            'requires_human': False,
            'response': 'Booked!',
        })))

    intent = _client(handler).analyze('Monday at 9?', ['05/01/2026 at 09:00'])

    assert captured['url'] == 'https://llm.example/v1/chat/completions'
    assert captured['auth'] == 'Bearer test-key'
    assert captured['body']['model'] == 'test-model'
    assert captured['body']['response_format'] == {'type': 'json_object'}
    assert '05/01/2026 at 09:00' in captured['body']['messages'][1]['content']
    assert intent.source_text == 'Monday at 9?'
    assert intent.is_booking_request is True
    assert intent.matched_slot == '05/01/2026 at 09:00'
    assert intent.requested_time.hour == 9
    assert intent.urgency == 'high'


def test_analyze_timeout_raises_upstream_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout('too slow', request=request)

    with pytest.raises(UpstreamTimeoutError):
        _client(handler).analyze('hi', [])


def test_analyze_enforces_overall_deadline() -> None:
    release = threading.Event()

    def slow_handler(request: httpx.Request) -> httpx.Response:
        release.wait(5)
        return httpx.Response(200, json=_completion('{}'))

    client = IntentClient(
        api_url='https://llm.example/v1',
        api_key='test-key',
        timeout_seconds=0.2,
        transport=httpx.MockTransport(slow_handler),
    )

    started = time.monotonic()
    try:
        with pytest.raises(UpstreamTimeoutError):
            client.analyze('hi', [])
        assert time.monotonic() - started < 2
    finally:
        release.set()


def test_analyze_http_error_raises_upstream_error() -> None:
    with pytest.raises(UpstreamError) as exception_info:
        _client(lambda request: httpx.Response(500, text='boom')).analyze('hi', [])

    assert not isinstance(exception_info.value, UpstreamTimeoutError)


@pytest.mark.parametrize(
    'payload',
    [
        _completion('not json at all'),
        _completion(json.dumps({'confidence': 7})),
        {'choices': []},
    ],
)
def test_analyze_unusable_answer_raises_upstream_error(payload: dict) -> None:
    with pytest.raises(UpstreamError):
        _client(lambda request: httpx.Response(200, json=payload)).analyze('hi', [])


def test_booking_intent_normalizes_blank_fields() -> None:
    intent = BookingIntent(matched_slot='  ', appointment_type='', urgency='whenever')

    assert intent.matched_slot is None
    assert intent.appointment_type is None
    assert intent.urgency == 'normal'
