import json

import httpx
import pytest

from backend.services import messaging_service
from backend.services.messaging_service import WhatsAppService, parse_webhook_payload, verify_webhook


def webhook_payload(*messages: dict) -> dict:
    return {
        'object': 'whatsapp_business_account',
        'entry': [{
            'id': 'waba',
            'changes': [{
                'field': 'messages',
                'value': {
                    'messaging_product': 'whatsapp',
                    'metadata': {'display_phone_number': '5511888880000', 'phone_number_id': 'pn-1'},
                    'contacts': [{'wa_id': '5511999990000', 'profile': {'name': 'Ana Souza'}}],
                    'messages': list(messages),
                },
            }],
        }],
    }


def text_message(body: str, message_id: str = 'wamid.1', sender: str = '5511999990000') -> dict:
    return {'from': sender, 'id': message_id, 'type': 'text', 'text': {'body': body}}


def _service(handler, **overrides) -> WhatsAppService:
    settings = {
        'base_url': 'https://graph.example',
        'version': 'v22.0',
        'phone_number_id': 'pn-1',
        'access_token': 'token',
        'transport': httpx.MockTransport(handler),
    }
    settings.update(overrides)
    return WhatsAppService(**settings)


def test_parse_webhook_payload_extracts_text_messages() -> None:
    payload = webhook_payload(
        text_message('I need an appointment'),
        {'from': '5511999990000', 'id': 'wamid.2', 'type': 'image', 'image': {}},
        text_message('   ', message_id='wamid.3'),
    )

    messages = parse_webhook_payload(payload)

    assert len(messages) == 1
    assert messages[0].message_id == 'wamid.1'
    assert messages[0].from_number == '5511999990000'
    assert messages[0].to_number == '5511888880000'
    assert messages[0].text == 'I need an appointment'
    assert messages[0].sender_name == 'Ana Souza'


def test_parse_webhook_payload_tolerates_status_updates() -> None:
    assert parse_webhook_payload({'entry': [{'changes': [{'value': {'statuses': [{}]}}]}]}) == []
    assert parse_webhook_payload({}) == []


def test_verify_webhook(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(messaging_service.config, 'WHATSAPP_VERIFY_TOKEN', 'secret')

    assert verify_webhook('subscribe', 'secret', '1234') == '1234'
    assert verify_webhook('subscribe', 'wrong', '1234') is None
    assert verify_webhook('unsubscribe', 'secret', '1234') is None


def test_send_text_posts_to_cloud_api() -> None:
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured['url'] = str(request.url)
        captured['body'] = json.loads(request.content)
        return httpx.Response(200, json={'messages': [{'id': 'wamid.out'}]})

    assert _service(handler).send_text('5511999990000', 'hello') is True
    assert captured['url'] == 'https://graph.example/v22.0/pn-1/messages'
    assert captured['body']['text'] == {'body': 'hello'}
    assert captured['body']['to'] == '5511999990000'


def test_send_alternative_slots_lists_options() -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content)['text']['body'])
        return httpx.Response(200, json={})

    _service(handler).send_alternative_slots('5511999990000', ['05/01/2026 at 09:30'])

    assert '- 05/01/2026 at 09:30' in bodies[0]


def test_send_failures_are_reported_not_raised() -> None:
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout('no route', request=request)

    assert _service(lambda request: httpx.Response(400, text='bad')).send_text('1', 'x') is False
    assert _service(timeout).send_text('1', 'x') is False


def test_unconfigured_service_drops_messages() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200)

    service = _service(handler, access_token='')

    assert service.is_configured is False
    assert service.send_text('1', 'x') is False
    assert calls == []
