"""
Timeout Manager — Un temporizador de inactividad por usuario.

La tabla de temporizadores es el único recurso compartido del bot:
start/renew/cancel la mutan siempre bajo `self._lock`.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MINUTES = 15

# (user_id, conversation_id) -> None
ExpiryHandler = Callable[[int, int], None]


@dataclass
class TimeoutEntry:
    conversation_id: int
    timer: Optional[threading.Timer] = None
    fired: bool = False


class TimeoutManager:
    """Arma, renueva y cancela el temporizador de cada usuario."""

    def __init__(
        self,
        on_expire: Optional[ExpiryHandler] = None,
        default_minutes: float = DEFAULT_TIMEOUT_MINUTES,
        timer_factory=threading.Timer,
    ):
        self._on_expire = on_expire
        self._default_minutes = default_minutes
        self._timer_factory = timer_factory
        self._entries: Dict[int, TimeoutEntry] = {}
        self._lock = threading.Lock()
        self._closed = False

    def set_expiry_handler(self, handler: ExpiryHandler) -> None:
        self._on_expire = handler

    # Public API

    def start(self, user_id: int, conversation_id: int, minutes: float = None) -> None:
        """Arma el temporizador; si ya había uno para el usuario lo reemplaza."""
        with self._lock:
            self._cancel_locked(user_id)
            self._start_locked(user_id, conversation_id, minutes)

    def renew(self, user_id: int, conversation_id: int, minutes: float = None) -> None:
        """cancel + start en una sola operación atómica."""
        with self._lock:
            self._cancel_locked(user_id)
            self._start_locked(user_id, conversation_id, minutes)
        logger.debug(f"[{user_id}] Timeout renovado (conversación {conversation_id})")

    def cancel(self, user_id: int) -> bool:
        """Cancela el temporizador del usuario. False si no tenía ninguno."""
        with self._lock:
            return self._cancel_locked(user_id)

    def has_active(self, user_id: int) -> bool:
        with self._lock:
            return user_id in self._entries

    def active_count(self) -> int:
        with self._lock:
            return len(self._entries)

    def active_conversation(self, user_id: int) -> Optional[int]:
        """Id de la conversación para la que está armado el temporizador."""
        with self._lock:
            entry = self._entries.get(user_id)
            return entry.conversation_id if entry else None

    def is_expired(self, user_id: int) -> bool:
        """
        True si el temporizador vigente del usuario ya disparó.

        El handler de expiración lo consulta tras tomar el lock del usuario:
        si un turno lo renovó mientras tanto, la expiración quedó obsoleta.
        """
        with self._lock:
            entry = self._entries.get(user_id)
            return entry is not None and entry.fired

    def shutdown(self) -> None:
        """Cancela todos los temporizadores; start() queda deshabilitado."""
        with self._lock:
            self._closed = True
            count = len(self._entries)
            for entry in self._entries.values():
                entry.timer.cancel()
            self._entries.clear()
        logger.info(f"TimeoutManager detenido ({count} temporizadores cancelados)")

    # Internals

    def _start_locked(self, user_id: int, conversation_id: int, minutes: float) -> None:
        if self._closed:
            logger.warning(f"[{user_id}] TimeoutManager detenido, no se arma el temporizador")
            return
        if minutes is None:
            minutes = self._default_minutes

        entry = TimeoutEntry(conversation_id=conversation_id)
        timer = self._timer_factory(minutes * 60, self._fire, args=(user_id, entry))
        timer.daemon = True
        entry.timer = timer
        self._entries[user_id] = entry
        timer.start()

    def _cancel_locked(self, user_id: int) -> bool:
        entry = self._entries.pop(user_id, None)
        if entry is None:
            return False
        entry.timer.cancel()
        return True

    def _fire(self, user_id: int, entry: TimeoutEntry) -> None:
        with self._lock:
            # Reemplazado o cancelado justo antes de disparar
            if self._entries.get(user_id) is not entry:
                return
            entry.fired = True

        logger.info(
            f"[{user_id}] Conversación {entry.conversation_id} expirada por inactividad"
        )
        try:
            if self._on_expire is not None:
                self._on_expire(user_id, entry.conversation_id)
        except Exception as e:
            logger.error(f"[{user_id}] Error procesando expiración: {e}", exc_info=True)
        finally:
            with self._lock:
                # Nunca borrar el temporizador que lo haya reemplazado
                if self._entries.get(user_id) is entry:
                    del self._entries[user_id]
