"""
Transport — Envío de mensajes por la Bot API de Telegram.

El Supervisor solo conoce `MessageTransport`; los tests usan un MagicMock.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from bot.outbound import DELETE, PHOTO, TEXT, OutboundMessage

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"


class MessageTransport(Protocol):
    def send_text(
        self,
        chat_id: int,
        text: str,
        parse_mode: Optional[str] = None,
        reply_markup: Optional[Dict[str, Any]] = None,
    ) -> bool: ...

    def send_photo(self, chat_id: int, photo_ref: str, caption: Optional[str] = None) -> bool: ...

    def delete_message(self, chat_id: int, message_id: int) -> bool: ...

    def deliver(self, messages: List[OutboundMessage]) -> int: ...


class TelegramTransport:
    """Cliente mínimo de la Bot API (sendMessage, sendPhoto, deleteMessage)."""

    def __init__(
        self,
        bot_token: str,
        api_base: str = TELEGRAM_API_BASE,
        http_client: Optional[httpx.Client] = None,
    ):
        self._base_url = f"{api_base}/bot{bot_token}"
        self._client = http_client or httpx.Client(timeout=15.0)

    def _call(self, method: str, payload: Dict[str, Any]) -> bool:
        chat_id = payload.get("chat_id")
        try:
            response = self._client.post(f"{self._base_url}/{method}", json=payload)
        except httpx.HTTPError as e:
            logger.error(f"❌ Excepción en {method} para {chat_id}: {e}")
            return False

        if response.status_code == 200:
            logger.debug(f"✅ {method} enviado a {chat_id}")
            return True
        logger.warning(f"⚠️ Error en {method} para {chat_id}: {response.status_code} - {response.text}")
        return False

    def send_text(
        self,
        chat_id: int,
        text: str,
        parse_mode: Optional[str] = None,
        reply_markup: Optional[Dict[str, Any]] = None,
    ) -> bool:
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_markup:
            payload["reply_markup"] = json.dumps(reply_markup, ensure_ascii=False)
        return self._call("sendMessage", payload)

    def send_photo(self, chat_id: int, photo_ref: str, caption: Optional[str] = None) -> bool:
        payload: Dict[str, Any] = {"chat_id": chat_id, "photo": photo_ref}
        if caption:
            payload["caption"] = caption
        return self._call("sendPhoto", payload)

    def delete_message(self, chat_id: int, message_id: int) -> bool:
        return self._call("deleteMessage", {"chat_id": chat_id, "message_id": message_id})

    def deliver(self, messages: List[OutboundMessage]) -> int:
        """Envía en orden; devuelve cuántos se entregaron."""
        sent = 0
        for msg in messages:
            if msg.kind == TEXT:
                ok = self.send_text(msg.chat_id, msg.text, msg.parse_mode, msg.reply_markup)
            elif msg.kind == PHOTO:
                ok = self.send_photo(msg.chat_id, msg.photo_ref, msg.text)
            elif msg.kind == DELETE:
                ok = self.delete_message(msg.chat_id, msg.message_id)
            else:
                logger.warning(f"Tipo de mensaje desconocido: {msg.kind}")
                ok = False
            sent += int(ok)
        return sent

    def close(self) -> None:
        self._client.close()
