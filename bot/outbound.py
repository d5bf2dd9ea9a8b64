"""Mensajes salientes que devuelven los puntos de entrada del Supervisor."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

TEXT = "text"
PHOTO = "photo"
DELETE = "delete"


@dataclass
class OutboundMessage:
    kind: str
    chat_id: int
    text: Optional[str] = None
    parse_mode: Optional[str] = None
    reply_markup: Optional[Dict[str, Any]] = None
    photo_ref: Optional[str] = None
    message_id: Optional[int] = None


def text_message(
    chat_id: int,
    text: str,
    parse_mode: Optional[str] = None,
    reply_markup: Optional[Dict[str, Any]] = None,
) -> OutboundMessage:
    return OutboundMessage(
        kind=TEXT,
        chat_id=chat_id,
        text=text,
        parse_mode=parse_mode,
        reply_markup=reply_markup,
    )


def photo_message(
    chat_id: int, photo_ref: str, caption: Optional[str] = None
) -> OutboundMessage:
    return OutboundMessage(kind=PHOTO, chat_id=chat_id, photo_ref=photo_ref, text=caption)


def delete_message(chat_id: int, message_id: int) -> OutboundMessage:
    return OutboundMessage(kind=DELETE, chat_id=chat_id, message_id=message_id)
