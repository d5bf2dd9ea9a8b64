"""
Guarantee Flow — Registro de garantía paso a paso.

Número de factura → foto de factura → foto del producto → descripción.
Los pasos solo avanzan; /cancel es la única salida anticipada.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from bot.db_service import DBService
from bot.outbound import OutboundMessage, text_message
from bot.session import FlowState, GuaranteeStep, Session

logger = logging.getLogger(__name__)

MIN_INVOICE_LENGTH = 3
MIN_DESCRIPTION_LENGTH = 10

START_PROMPT = (
    "🔧 <b>Registro de Garantía</b>\n\n"
    "Por favor, envía el <b>número de factura</b> para comenzar.\n\n"
    "Puedes cancelar en cualquier momento escribiendo <b>/cancel</b>"
)
CANCELLED = "❌ Flujo de garantía cancelado\n\n¿En qué más puedo ayudarte?"


@dataclass
class StepResult:
    """Resultado de procesar un evento dentro del flujo."""

    handled: bool
    messages: List[OutboundMessage] = field(default_factory=list)
    guarantee: Optional[Dict] = None


def pick_largest_photo(photos: Optional[List[Dict[str, Any]]]) -> Optional[str]:
    """
    Elige el file_id de mayor resolución (ancho × alto).

    Telegram envía varias versiones de la misma foto; ante empate
    (o sin dimensiones) gana la última, que es la más grande.
    """
    best, best_area = None, -1
    for photo in photos or []:
        file_id = photo.get("file_id")
        if not file_id:
            continue
        area = (photo.get("width") or 0) * (photo.get("height") or 0)
        if area >= best_area:
            best, best_area = file_id, area
    return best


class GuaranteeFlowEngine:
    """Máquina de pasos del registro de garantía."""

    def __init__(self, db: DBService):
        self._db = db

    @staticmethod
    def is_in_flow(session: Session) -> bool:
        flow = session.guarantee_flow
        return (
            session.state == FlowState.GUARANTEE_FLOW
            and flow is not None
            and flow.step != GuaranteeStep.COMPLETED
        )

    def start_flow(self, user_id: int, chat_id: int, session: Session) -> List[OutboundMessage]:
        """Entra (o reinicia) el flujo en `waiting_invoice_number`."""
        session.enter_guarantee_flow()
        logger.info(f"[{user_id}] Flujo de garantía iniciado")
        return [text_message(chat_id, START_PROMPT, parse_mode="HTML")]

    def cancel_flow(self, user_id: int, chat_id: int, session: Session) -> List[OutboundMessage]:
        session.reset_to_idle()
        logger.info(f"[{user_id}] Flujo de garantía cancelado")
        return [text_message(chat_id, CANCELLED)]

    def process_step(
        self,
        user_id: int,
        chat_id: int,
        session: Session,
        text: Optional[str] = None,
        photos: Optional[List[Dict[str, Any]]] = None,
    ) -> StepResult:
        """
        Procesa un texto o una foto en el paso actual.

        `handled` es False solo si la sesión no está en el flujo; las
        entradas inválidas se responden con un mensaje correctivo.
        """
        if not self.is_in_flow(session):
            return StepResult(handled=False)

        step = session.guarantee_flow.step
        logger.debug(f"[{user_id}] Paso de garantía: {step.value}")

        if step == GuaranteeStep.WAITING_INVOICE_NUMBER:
            reply = self._handle_invoice_number(session, text)
        elif step == GuaranteeStep.WAITING_INVOICE_PHOTO:
            reply = self._handle_photo(
                session,
                photos,
                field_name="invoice_photo_ref",
                next_step=GuaranteeStep.WAITING_PRODUCT_PHOTO,
                missing="❌ Por favor, envía una foto de la factura.",
                done=(
                    "✅ Foto de factura recibida\n\n"
                    "Ahora envía una foto del producto para continuar."
                ),
            )
        elif step == GuaranteeStep.WAITING_PRODUCT_PHOTO:
            reply = self._handle_photo(
                session,
                photos,
                field_name="product_photo_ref",
                next_step=GuaranteeStep.WAITING_DESCRIPTION,
                missing="❌ Por favor, envía una foto del producto.",
                done=(
                    "✅ Foto del producto recibida\n\n"
                    "Finalmente, describe el problema o motivo de la garantía."
                ),
            )
        else:
            return self._handle_description(user_id, chat_id, session, text)

        return StepResult(handled=True, messages=[text_message(chat_id, reply)])

    # Steps

    def _handle_invoice_number(self, session: Session, text: Optional[str]) -> str:
        if text is None:
            return "❌ Por favor, envía el número de factura como texto."

        invoice_number = text.strip()
        if len(invoice_number) < MIN_INVOICE_LENGTH:
            return (
                "❌ El número de factura debe tener al menos "
                f"{MIN_INVOICE_LENGTH} caracteres. Intenta de nuevo."
            )

        flow = session.guarantee_flow
        flow.data.invoice_number = invoice_number
        flow.advance(GuaranteeStep.WAITING_INVOICE_PHOTO)
        return (
            f"✅ Número de factura registrado: {invoice_number}\n\n"
            "Ahora envía una foto de la factura para continuar."
        )

    def _handle_photo(
        self,
        session: Session,
        photos: Optional[List[Dict[str, Any]]],
        field_name: str,
        next_step: GuaranteeStep,
        missing: str,
        done: str,
    ) -> str:
        if not photos:
            return missing

        file_id = pick_largest_photo(photos)
        if not file_id:
            return "❌ Error procesando la foto. Intenta de nuevo."

        flow = session.guarantee_flow
        setattr(flow.data, field_name, file_id)
        flow.advance(next_step)
        return done

    def _handle_description(
        self, user_id: int, chat_id: int, session: Session, text: Optional[str]
    ) -> StepResult:
        if text is None:
            reply = "❌ Por favor, envía la descripción del problema como texto."
            return StepResult(handled=True, messages=[text_message(chat_id, reply)])

        description = text.strip()
        if len(description) < MIN_DESCRIPTION_LENGTH:
            reply = (
                "❌ La descripción debe tener al menos "
                f"{MIN_DESCRIPTION_LENGTH} caracteres. Intenta de nuevo."
            )
            return StepResult(handled=True, messages=[text_message(chat_id, reply)])

        flow = session.guarantee_flow
        flow.data.description = description
        if not flow.data.is_complete():
            logger.error(f"[{user_id}] Flujo de garantía con datos incompletos: {flow.data}")
            reply = "❌ Error: Faltan datos del flujo de garantía. Escribe /cancel y vuelve a empezar."
            return StepResult(handled=True, messages=[text_message(chat_id, reply)])

        try:
            guarantee = self._db.create_guarantee(
                user_id=user_id,
                invoice_number=flow.data.invoice_number,
                invoice_photo_ref=flow.data.invoice_photo_ref,
                product_photo_ref=flow.data.product_photo_ref,
                description=description,
            )
        except sqlite3.Error as e:
            # Se queda en waiting_description para reenviar solo la descripción
            logger.error(f"[{user_id}] Error registrando garantía: {e}", exc_info=True)
            reply = "❌ Error registrando la garantía. Intenta de nuevo."
            return StepResult(handled=True, messages=[text_message(chat_id, reply)])

        flow.advance(GuaranteeStep.COMPLETED)
        session.reset_to_idle()
        logger.info(f"[{user_id}] Garantía registrada: #{guarantee['id']}")

        reply = (
            "✅ Garantía registrada exitosamente\n\n"
            f"Número de garantía: #{guarantee['id']}\n"
            f"Número de factura: {guarantee['invoice_number']}\n"
            "Estado: Pendiente de revisión\n\n"
            "Tu solicitud de garantía ha sido registrada y será revisada por "
            "nuestro equipo. Te contactaremos pronto.\n\n"
            "¿Hay algo más en lo que pueda ayudarte?"
        )
        return StepResult(
            handled=True, messages=[text_message(chat_id, reply)], guarantee=guarantee
        )
