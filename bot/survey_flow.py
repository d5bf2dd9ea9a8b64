"""
Survey Flow — Encuesta de satisfacción al cerrar una conversación.

Se envía con cinco botones (callback `survey_1` … `survey_5`) y la
respuesta se guarda ligada a la conversación que la originó.
"""

import logging
import sqlite3
from typing import Dict, List, Optional

from bot.db_service import DBService
from bot.outbound import OutboundMessage, text_message
from bot.session import FlowState, Session

logger = logging.getLogger(__name__)

SURVEY_CALLBACK_PREFIX = "survey_"

SURVEY_PROMPT = (
    "📝 *Encuesta de Satisfacción*\n\n"
    "¡Gracias por contactarnos! Tu opinión es muy importante para nosotros.\n\n"
    "¿Cómo calificarías tu experiencia con nuestro servicio de atención?\n\n"
    "_Selecciona una opción:_"
)

SURVEY_PENDING = "Por favor, selecciona una opción de la encuesta de satisfacción."
SURVEY_CANCELLED = "❌ Encuesta cancelada. ¿En qué más puedo ayudarte?"

# Filas del teclado inline: (texto, rating)
_RATING_ROWS = [
    [("😊 Excelente (5)", 5), ("😌 Muy bueno (4)", 4)],
    [("😐 Bueno (3)", 3), ("😕 Regular (2)", 2)],
    [("😞 Malo (1)", 1)],
]

RATING_ACKNOWLEDGEMENTS: Dict[int, str] = {
    5: (
        "😊 *¡Excelente!*\n\n"
        "¡Nos alegra saber que tuviste una excelente experiencia! "
        "Tu calificación nos ayuda a seguir mejorando.\n\n"
        "¡Gracias por elegirnos! 🙏"
    ),
    4: (
        "😌 *¡Muy bien!*\n\n"
        "¡Gracias por tu calificación! Nos esforzamos por brindar el mejor servicio.\n\n"
        "¡Esperamos verte pronto! 😊"
    ),
    3: (
        "😐 *¡Gracias!*\n\n"
        "Apreciamos tu feedback. Trabajamos constantemente para mejorar nuestro servicio.\n\n"
        "¡Esperamos superar tus expectativas la próxima vez! 💪"
    ),
    2: (
        "😕 *Entendemos tu preocupación*\n\n"
        "Lamentamos que tu experiencia no haya sido la esperada. "
        "Tu feedback es valioso para nosotros.\n\n"
        "¿Te gustaría que un supervisor revise tu caso? "
        "Escribe /contact para más opciones."
    ),
    1: (
        "😞 *Lamentamos mucho tu experiencia*\n\n"
        "Nos disculpamos sinceramente. Tu feedback es crucial para mejorar "
        "nuestro servicio.\n\n"
        "Por favor, contacta a un supervisor escribiendo /contact para que "
        "podamos resolver tu situación."
    ),
}


def survey_keyboard() -> Dict:
    """Teclado inline con las cinco calificaciones."""
    return {
        "inline_keyboard": [
            [
                {"text": label, "callback_data": f"{SURVEY_CALLBACK_PREFIX}{rating}"}
                for label, rating in row
            ]
            for row in _RATING_ROWS
        ]
    }


def is_survey_callback(callback_data: Optional[str]) -> bool:
    return bool(callback_data) and callback_data.startswith(SURVEY_CALLBACK_PREFIX)


def parse_rating(callback_data: str) -> Optional[int]:
    """'survey_4' → 4. None si el sufijo no es un entero."""
    if not is_survey_callback(callback_data):
        return None
    try:
        return int(callback_data[len(SURVEY_CALLBACK_PREFIX):])
    except ValueError:
        return None


class SurveyFlowEngine:
    """Envía la encuesta y procesa la calificación."""

    def __init__(self, db: DBService):
        self._db = db

    @staticmethod
    def is_waiting(session: Session) -> bool:
        survey = session.survey
        return (
            session.state == FlowState.SURVEY_WAITING
            and survey is not None
            and survey.waiting_for_rating
        )

    def send_prompt(
        self, chat_id: int, session: Session, conversation_id: Optional[int]
    ) -> List[OutboundMessage]:
        session.enter_survey(conversation_id)
        logger.info(f"[{chat_id}] Encuesta enviada (conversación {conversation_id})")
        return [
            text_message(
                chat_id, SURVEY_PROMPT, parse_mode="Markdown", reply_markup=survey_keyboard()
            )
        ]

    def process_response(
        self, user_id: int, chat_id: int, session: Session, rating: Optional[int]
    ) -> List[OutboundMessage]:
        if not self.is_waiting(session):
            return [text_message(chat_id, "❌ No hay ninguna encuesta pendiente.")]

        if rating is None or not 1 <= rating <= 5:
            logger.warning(f"[{user_id}] Calificación inválida: {rating}")
            return [
                text_message(
                    chat_id, "❌ Calificación inválida. Selecciona un valor del 1 al 5."
                )
            ]

        conversation_id = session.survey.conversation_id
        try:
            self._db.create_survey(
                user_id=user_id, rating=rating, conversation_id=conversation_id
            )
        except sqlite3.Error as e:
            logger.error(f"[{user_id}] Error registrando encuesta: {e}", exc_info=True)
            return [
                text_message(chat_id, "❌ Error registrando tu respuesta. Intenta de nuevo.")
            ]

        session.reset_to_idle()
        logger.info(f"[{user_id}] Encuesta completada - Rating: {rating}")
        return [
            text_message(chat_id, RATING_ACKNOWLEDGEMENTS[rating], parse_mode="Markdown")
        ]

    def cancel(self, user_id: int, chat_id: int, session: Session) -> List[OutboundMessage]:
        session.reset_to_idle()
        logger.info(f"[{user_id}] Encuesta cancelada")
        return [text_message(chat_id, SURVEY_CANCELLED)]

    def stats(self) -> Dict:
        return self._db.get_survey_stats()
