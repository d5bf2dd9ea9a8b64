"""
Tests para bot/transport.py — Envío por la Bot API de Telegram.
"""

import json

import httpx

from bot.outbound import delete_message, photo_message, text_message
from bot.transport import TelegramTransport


def _transport(status=200):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(status, json={"ok": status == 200})

    http = httpx.Client(transport=httpx.MockTransport(handler))
    return TelegramTransport("TESTTOKEN", api_base="https://tg.test", http_client=http), calls


class TestTelegramTransport:
    def test_send_text_with_markup(self):
        transport, calls = _transport()
        markup = {"inline_keyboard": [[{"text": "5", "callback_data": "survey_5"}]]}
        assert transport.send_text(5001, "Hola", parse_mode="Markdown", reply_markup=markup)

        request = calls[0]
        assert str(request.url) == "https://tg.test/botTESTTOKEN/sendMessage"
        body = json.loads(request.content)
        assert body["chat_id"] == 5001
        assert body["parse_mode"] == "Markdown"
        assert json.loads(body["reply_markup"]) == markup

    def test_deliver_in_order(self):
        transport, calls = _transport()
        sent = transport.deliver(
            [
                delete_message(5001, 77),
                text_message(5001, "Gracias"),
                photo_message(5001, "file_abc", caption="Air Fryer"),
            ]
        )
        assert sent == 3
        methods = [str(r.url).rsplit("/", 1)[-1] for r in calls]
        assert methods == ["deleteMessage", "sendMessage", "sendPhoto"]
        assert json.loads(calls[2].content)["caption"] == "Air Fryer"

    def test_api_error_counts_as_not_sent(self):
        transport, _ = _transport(status=400)
        assert transport.deliver([text_message(5001, "Hola")]) == 0

    def test_network_error_returns_false(self):
        def handler(request):
            raise httpx.ConnectError("sin red")

        http = httpx.Client(transport=httpx.MockTransport(handler))
        transport = TelegramTransport("TESTTOKEN", http_client=http)
        assert transport.send_text(5001, "Hola") is False
