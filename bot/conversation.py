"""
Session Manager — Sesiones por usuario en memoria + tabla `user_sessions`.

Abstrae la persistencia de la Session y entrega un lock por usuario
para serializar sus turnos.
"""

import logging
import sqlite3
import threading
from typing import Dict

from bot.db_service import DBService
from bot.session import Session

logger = logging.getLogger(__name__)


class SessionManager:
    """Carga, cachea y persiste la Session de cada usuario."""

    def __init__(self, db: DBService):
        self._db = db
        self._sessions: Dict[int, Session] = {}
        self._locks: Dict[int, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, user_id: int) -> threading.Lock:
        """Lock del usuario (se crea la primera vez)."""
        with self._guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    def load(self, user_id: int) -> Session:
        """Memoria → persistida → Session idle nueva."""
        session = self._sessions.get(user_id)
        if session is None:
            session = self._restore(user_id)
            self._sessions[user_id] = session
        return session

    def save(self, user_id: int, session: Session) -> bool:
        """
        Persiste la sesión. Un error se loguea y se ignora: el turno
        actual sigue con la copia en memoria.
        """
        self._sessions[user_id] = session
        try:
            self._db.save_session_json(user_id, session.to_json())
            return True
        except sqlite3.Error as e:
            logger.error(f"[{user_id}] No se pudo persistir la sesión: {e}", exc_info=True)
            return False

    def cached_count(self) -> int:
        return len(self._sessions)

    def _restore(self, user_id: int) -> Session:
        try:
            raw = self._db.get_session_json(user_id)
        except sqlite3.Error as e:
            logger.error(f"[{user_id}] No se pudo leer la sesión persistida: {e}")
            return Session()

        if raw is None:
            return Session()

        try:
            session = Session.from_json(raw)
        except ValueError as e:
            logger.warning(f"[{user_id}] Sesión persistida corrupta, se inicia en idle: {e}")
            return Session()

        logger.debug(f"[{user_id}] Sesión restaurada en estado {session.state.value}")
        return session
