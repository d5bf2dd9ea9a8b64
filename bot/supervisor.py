"""
Supervisor — Punto de entrada del bot conversacional.

Flujo de cada evento:
1. Registrar usuario y mensaje (best-effort)
2. Cargar Session (memoria → persistida → idle nueva)
3. Enrutar: flujo de garantía → encuesta → asistente de IA
4. Persistir la Session
5. Abrir conversación / renovar el temporizador de inactividad

Los turnos de un mismo usuario se serializan con su lock; la expiración
del temporizador toma el mismo lock.
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from bot.conversation import SessionManager
from bot.db_service import DBService
from bot.dispatcher import ActionDispatcher, DispatchResult
from bot.guarantee_flow import GuaranteeFlowEngine
from bot.handlers import (
    format_catalog_response,
    format_contact_response,
    format_guarantees_response,
    format_location_response,
    format_product_caption,
    format_schedule_response,
)
from bot.outbound import OutboundMessage, delete_message, photo_message, text_message
from bot.session import FlowState, Session
from bot.survey_flow import (
    SURVEY_PENDING,
    SurveyFlowEngine,
    is_survey_callback,
    parse_rating,
)
from bot.timeout import DEFAULT_TIMEOUT_MINUTES, TimeoutManager
from bot.transport import MessageTransport

logger = logging.getLogger(__name__)

PHOTO_NOT_EXPECTED = (
    "📸 Recibí tu foto, pero actualmente solo puedo procesar fotos durante el "
    "registro de garantías. Si quieres registrar una garantía, pídemelo y te "
    "guiaré paso a paso."
)
NOTHING_TO_CANCEL = "No hay nada que cancelar. ¿En qué puedo ayudarte?"
SURVEY_EXPIRED = "Esta encuesta ya no está disponible. ¿En qué puedo ayudarte?"
TECHNICAL_ERROR = (
    "Disculpa, tengo problemas técnicos en este momento. "
    "Por favor, intenta nuevamente en unos momentos."
)
TIMEOUT_REASON = "Timeout por inactividad"
CONTACT_UNAVAILABLE = (
    "📞 En este momento no tengo los datos de contacto de la tienda. "
    "Por favor, intenta nuevamente más tarde."
)


class Supervisor:
    """Coordina Session, flujos, asistente y temporizadores por usuario."""

    def __init__(
        self,
        db: DBService,
        dispatcher: ActionDispatcher,
        transport: MessageTransport,
        timeouts: Optional[TimeoutManager] = None,
        sessions: Optional[SessionManager] = None,
        guarantee: Optional[GuaranteeFlowEngine] = None,
        survey: Optional[SurveyFlowEngine] = None,
        timeout_minutes: float = DEFAULT_TIMEOUT_MINUTES,
    ):
        self._db = db
        self._dispatcher = dispatcher
        self._transport = transport
        self._sessions = sessions or SessionManager(db)
        self._guarantee = guarantee or GuaranteeFlowEngine(db)
        self._survey = survey or SurveyFlowEngine(db)
        self._timeout_minutes = timeout_minutes
        self._timeouts = timeouts or TimeoutManager(default_minutes=timeout_minutes)
        self._timeouts.set_expiry_handler(self.handle_timeout)

        logger.info("Supervisor inicializado")

    # Entry points

    def handle_inbound_text(
        self, user_id: int, chat_id: int, text: str, user_info: Optional[Dict] = None
    ) -> List[OutboundMessage]:
        with self._sessions.lock_for(user_id):
            self._register(user_id, chat_id, "text", text, user_info)
            session = self._sessions.load(user_id)
            session.touch()
            logger.info(f"[{user_id}] Mensaje: {text[:60]}")

            if self._guarantee.is_in_flow(session):
                step = self._guarantee.process_step(user_id, chat_id, session, text=text)
                if step.handled:
                    return self._finish_turn(user_id, session, step.messages, may_open=True)

            if self._survey.is_waiting(session):
                messages = [text_message(chat_id, SURVEY_PENDING)]
            else:
                messages = self._process_with_ai(user_id, chat_id, text, session)
            return self._finish_turn(user_id, session, messages, may_open=True)

    def handle_inbound_photo(
        self,
        user_id: int,
        chat_id: int,
        photos: List[Dict[str, Any]],
        user_info: Optional[Dict] = None,
    ) -> List[OutboundMessage]:
        """`photos`: tamaños de la misma foto ({file_id, width, height})."""
        with self._sessions.lock_for(user_id):
            self._register(user_id, chat_id, "photo", None, user_info)
            session = self._sessions.load(user_id)
            session.touch()

            if self._guarantee.is_in_flow(session):
                step = self._guarantee.process_step(user_id, chat_id, session, photos=photos)
                if step.handled:
                    return self._finish_turn(user_id, session, step.messages, may_open=True)

            if self._survey.is_waiting(session):
                messages = [text_message(chat_id, SURVEY_PENDING)]
            else:
                messages = [text_message(chat_id, PHOTO_NOT_EXPECTED)]
            return self._finish_turn(user_id, session, messages, may_open=True)

    def handle_callback(
        self,
        user_id: int,
        chat_id: int,
        callback_data: str,
        message_id: Optional[int] = None,
    ) -> List[OutboundMessage]:
        with self._sessions.lock_for(user_id):
            self._register(user_id, chat_id, "callback", callback_data, None)
            session = self._sessions.load(user_id)
            session.touch()

            if self._survey.is_waiting(session):
                if not is_survey_callback(callback_data):
                    messages = [text_message(chat_id, SURVEY_PENDING)]
                    return self._finish_turn(user_id, session, messages, may_open=False)

                messages = self._survey.process_response(
                    user_id, chat_id, session, parse_rating(callback_data)
                )
                # Quitar los botones de la encuesta ya respondida
                if message_id is not None and not self._survey.is_waiting(session):
                    messages.insert(0, delete_message(chat_id, message_id))
                return self._finish_turn(user_id, session, messages, may_open=False)

            if is_survey_callback(callback_data):
                messages = [text_message(chat_id, SURVEY_EXPIRED)]
                return self._finish_turn(user_id, session, messages, may_open=False)

            # Botones generados por el asistente: se tratan como texto
            messages = self._process_with_ai(user_id, chat_id, callback_data, session)
            return self._finish_turn(user_id, session, messages, may_open=True)

    def cancel_current(self, user_id: int, chat_id: int) -> List[OutboundMessage]:
        with self._sessions.lock_for(user_id):
            session = self._sessions.load(user_id)
            session.touch()

            if self._guarantee.is_in_flow(session):
                messages = self._guarantee.cancel_flow(user_id, chat_id, session)
            elif session.state == FlowState.SURVEY_WAITING:
                messages = self._survey.cancel(user_id, chat_id, session)
            else:
                messages = [text_message(chat_id, NOTHING_TO_CANCEL)]
            return self._finish_turn(user_id, session, messages, may_open=False)

    def contact_info(self, user_id: int, chat_id: int) -> List[OutboundMessage]:
        """/contact: datos de la tienda sin pasar por el asistente ni tocar el flujo."""
        with self._sessions.lock_for(user_id):
            session = self._sessions.load(user_id)
            session.touch()

            try:
                store = self._db.get_store_config()
            except sqlite3.Error as e:
                logger.error(f"[{user_id}] No se pudo leer store_config: {e}")
                store = None

            if store is None:
                messages = [text_message(chat_id, CONTACT_UNAVAILABLE)]
            else:
                body = format_contact_response(store)
                messages = [text_message(chat_id, body, parse_mode="Markdown")]
            return self._finish_turn(user_id, session, messages, may_open=False)

    # Timeout

    def handle_timeout(self, user_id: int, conversation_id: int) -> None:
        """
        Expiración por inactividad: finaliza la conversación y envía la encuesta.

        Los errores se propagan al TimeoutManager, que los loguea y
        libera la entrada del usuario igualmente.
        """
        with self._sessions.lock_for(user_id):
            if not self._timeouts.is_expired(user_id):
                logger.debug(f"[{user_id}] Expiración obsoleta ignorada")
                return

            if not self._db.end_conversation(conversation_id, reason=TIMEOUT_REASON):
                logger.info(f"[{user_id}] Conversación {conversation_id} ya estaba finalizada")
                return

            user = self._db.get_user(user_id)
            chat_id = (user or {}).get("last_chat_id") or user_id

            session = self._sessions.load(user_id)
            messages = self._survey.send_prompt(chat_id, session, conversation_id)
            self._sessions.save(user_id, session)

        self._transport.deliver(messages)

    def resume_active_conversations(self) -> int:
        """Rearma los temporizadores de las conversaciones activas tras reiniciar."""
        try:
            conversations = self._db.get_active_conversations()
        except sqlite3.Error as e:
            logger.error(f"No se pudieron leer las conversaciones activas: {e}")
            return 0

        for conv in conversations:
            self._timeouts.start(conv["user_id"], conv["id"], self._timeout_minutes)
        if conversations:
            logger.info(f"{len(conversations)} temporizadores rearmados")
        return len(conversations)

    def shutdown(self) -> None:
        self._timeouts.shutdown()

    def check_assistant(self) -> bool:
        """Conectividad con el asistente (un intento, sin reintentos)."""
        return self._dispatcher.check_assistant()

    def stats(self) -> Dict:
        return {
            "active_timeouts": self._timeouts.active_count(),
            "cached_sessions": self._sessions.cached_count(),
            "surveys": self._survey.stats(),
        }

    # AI

    def _process_with_ai(
        self, user_id: int, chat_id: int, text: str, session: Session
    ) -> List[OutboundMessage]:
        if session.state == FlowState.CONVERSATION_ENDED:
            session.reset_to_idle()

        try:
            active = self._db.get_active_conversation(user_id)
            # La fila de la conversación es la fuente de verdad
            if active is not None:
                session.ai_session_data = active["ai_session_data"]

            result = self._dispatcher.dispatch(
                text, user_id, chat_id, session.ai_session_data
            )
        except Exception as e:
            logger.error(f"[{user_id}] Error procesando con IA: {e}", exc_info=True)
            return [text_message(chat_id, TECHNICAL_ERROR)]

        session.ai_session_data = result.updated_ai_session_data
        messages = [
            text_message(chat_id, result.response_text, result.parse_mode, result.reply_markup)
        ]
        messages.extend(self._render_outcomes(chat_id, result))
        self._store_ai_session_data(user_id, session)

        if result.start_guarantee_flow:
            messages.extend(self._guarantee.start_flow(user_id, chat_id, session))

        if result.end_requested:
            self._timeouts.cancel(user_id)
            conversation_id = result.ended_conversation_id
            if conversation_id is not None:
                messages.extend(self._survey.send_prompt(chat_id, session, conversation_id))
            else:
                session.mark_ended()

        return messages

    def _render_outcomes(self, chat_id: int, result: DispatchResult) -> List[OutboundMessage]:
        """Mensajes extra con los datos de las acciones exitosas."""
        messages = []
        for r in result.action_results:
            if not r.success:
                continue
            if r.command == "CONSULT_CATALOG" and not result.catalog_formatted:
                body = format_catalog_response(r.data["products"])
                messages.append(text_message(chat_id, body, parse_mode="Markdown"))
            elif r.command == "CONSULT_GUARANTEES":
                body = format_guarantees_response(r.data["guarantees"])
                messages.append(text_message(chat_id, body, parse_mode="Markdown"))
            elif r.command == "CONSULT_SCHEDULE":
                body = format_schedule_response(r.data["schedules"])
                messages.append(text_message(chat_id, body, parse_mode="Markdown"))
            elif r.command == "SEND_GEOLOCATION":
                body = format_location_response(r.data["store"])
                messages.append(text_message(chat_id, body, parse_mode="Markdown"))
            elif r.command == "SEND_IMAGE":
                caption = format_product_caption(r.data["product"])
                messages.append(photo_message(chat_id, r.data["file_id"], caption))
        return messages

    def _store_ai_session_data(self, user_id: int, session: Session) -> None:
        try:
            active = self._db.get_active_conversation(user_id)
            if active is not None:
                self._db.update_ai_session_data(active["id"], session.ai_session_data)
        except sqlite3.Error as e:
            logger.error(f"[{user_id}] No se pudo guardar ai_session_data: {e}")

    # Turn bookkeeping

    def _register(
        self,
        user_id: int,
        chat_id: int,
        message_type: str,
        content: Optional[str],
        user_info: Optional[Dict],
    ) -> None:
        info = user_info or {}
        try:
            self._db.upsert_user(
                user_id,
                chat_id,
                username=info.get("username"),
                first_name=info.get("first_name"),
                last_name=info.get("last_name"),
            )
            self._db.save_message(user_id, chat_id, message_type, content)
        except sqlite3.Error as e:
            logger.error(f"[{user_id}] No se pudo registrar el mensaje: {e}")

    def _finish_turn(
        self,
        user_id: int,
        session: Session,
        messages: List[OutboundMessage],
        may_open: bool,
    ) -> List[OutboundMessage]:
        """Persiste la sesión y, con la respuesta ya calculada, renueva el timeout."""
        self._sessions.save(user_id, session)
        self._sync_timeout(user_id, session, may_open)
        return messages

    def _sync_timeout(self, user_id: int, session: Session, may_open: bool) -> None:
        try:
            active = self._db.get_active_conversation(user_id)
            if active is None:
                if not (may_open and session.state == FlowState.IDLE):
                    return
                active = self._db.open_conversation(user_id, session.ai_session_data)
                logger.info(f"[{user_id}] Conversación {active['id']} iniciada")
        except sqlite3.Error as e:
            logger.error(f"[{user_id}] No se pudo abrir/leer la conversación: {e}")
            return

        self._timeouts.renew(user_id, active["id"], self._timeout_minutes)
