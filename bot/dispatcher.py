"""
AI Action Dispatcher — Asistente + ejecución de acciones.

Flujo de dispatch():
1. Enviar el mensaje y ai_session_data al asistente (con reintentos)
2. Ejecutar cada acción en el orden recibido; un fallo no frena al resto
3. Si hubo catálogo, pedir al asistente que lo formatee (opcional)
4. Devolver texto, ai_session_data actualizado y resultados por acción
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from bot.ai_client import BaseAssistant, is_fallback, strip_fallback
from bot.currency import CurrencyConverter
from bot.db_service import DBService
from bot.handlers import ACTION_HANDLERS, GUARANTEE_FLOW_MARKER, ActionResult

logger = logging.getLogger(__name__)

_CATALOG_FORMAT_PROMPT = """\
FORMATEAR CATÁLOGO DE PRODUCTOS:

Formatea la siguiente lista de productos de Tecno Express de manera atractiva
y organizada para el usuario.

PRODUCTOS DISPONIBLES:
{products}

INSTRUCCIONES:
1. Usa emojis apropiados y formato Markdown.
2. Muestra ambos precios con el formato "Precio: $X USD / Y Bs"; si un
   producto no tiene price_bs, indica que la conversión no está disponible.
3. Indica claramente los productos sin stock.
4. Para mostrar la foto de un producto con image_file_id agrega la acción
   {{"command": "SEND_IMAGE", "parameters": {{"product_id": X, "file_id": "..."}}}}.
5. Responde con el JSON {{"response": {{"text": "..."}}, "actions": [...]}}.
"""


@dataclass
class DispatchResult:
    response_text: str
    updated_ai_session_data: Dict[str, Any]
    action_results: List[ActionResult] = field(default_factory=list)
    parse_mode: Optional[str] = None
    reply_markup: Optional[Dict[str, Any]] = None
    fallback: bool = False
    catalog_formatted: bool = False

    # Señales para el Supervisor

    @property
    def start_guarantee_flow(self) -> bool:
        return any(
            r.success and r.command == "REGISTER_GUARANTEE" for r in self.action_results
        )

    @property
    def ended_conversation_id(self) -> Optional[int]:
        for r in self.action_results:
            if r.success and r.command == "END_CONVERSATION" and r.data["conversation_ended"]:
                return r.data["conversation_id"]
        return None

    @property
    def end_requested(self) -> bool:
        return any(
            r.success and r.command == "END_CONVERSATION" for r in self.action_results
        )


class ActionDispatcher:
    """Envía el turno al asistente y ejecuta las acciones que devuelve."""

    def __init__(
        self,
        assistant: BaseAssistant,
        db: DBService,
        currency: Optional[CurrencyConverter] = None,
        format_catalog: bool = True,
    ):
        self._assistant = assistant
        self._db = db
        self._currency = currency
        self._format_catalog = format_catalog

    # Entry point

    def dispatch(
        self,
        message: str,
        user_id: int,
        chat_id: int,
        ai_session_data: Optional[Dict[str, Any]] = None,
    ) -> DispatchResult:
        previous = strip_fallback(ai_session_data)
        ai_response = self._assistant.send_message(message, user_id, previous)
        response = ai_response["response"]
        fallback = is_fallback(ai_response)

        # Un turno de fallback no modifica el contexto guardado
        result = DispatchResult(
            response_text=response["text"],
            updated_ai_session_data=(
                previous if fallback else strip_fallback(ai_response["session_data"])
            ),
            parse_mode=response.get("parse_mode"),
            reply_markup=response.get("reply_markup"),
            fallback=fallback,
        )
        if result.fallback:
            logger.warning(f"[{user_id}] Turno respondido con fallback")

        result.action_results = self.execute_actions(ai_response["actions"], user_id)

        if result.start_guarantee_flow:
            result.updated_ai_session_data["flow"] = GUARANTEE_FLOW_MARKER

        catalog = self._first_catalog(result.action_results)
        if catalog is not None and self._format_catalog:
            self._apply_catalog_format(result, catalog, user_id)

        return result

    def check_assistant(self) -> bool:
        return self._assistant.check_connectivity()

    def execute_actions(self, actions: List[Any], user_id: int) -> List[ActionResult]:
        """Ejecuta en orden; cada acción es independiente de las demás."""
        results = []
        for action in actions:
            result = self._execute(action, user_id)
            if not result.success:
                logger.warning(f"[{user_id}] Acción {result.command} falló: {result.error}")
            results.append(result)
        return results

    # Internals

    def _execute(self, action: Any, user_id: int) -> ActionResult:
        if not isinstance(action, dict) or not isinstance(action.get("command"), str):
            return ActionResult(str(action), False, error="Acción malformada")

        command = action["command"]
        params = action.get("parameters") or {}
        if not isinstance(params, dict):
            return ActionResult(command, False, error="parameters debe ser un objeto")

        handler = ACTION_HANDLERS.get(command)
        if handler is None:
            return ActionResult(command, False, error=f"Comando no reconocido: {command}")

        logger.info(f"[{user_id}] Ejecutando acción {command}")
        try:
            return handler(params, user_id, self._db, self._currency)
        except Exception as e:
            logger.error(f"[{user_id}] Error ejecutando {command}: {e}", exc_info=True)
            return ActionResult(command, False, error=str(e))

    @staticmethod
    def _first_catalog(results: List[ActionResult]) -> Optional[List[Dict]]:
        for r in results:
            if r.success and r.command == "CONSULT_CATALOG" and r.data["products"]:
                return r.data["products"]
        return None

    def _apply_catalog_format(
        self, result: DispatchResult, products: List[Dict], user_id: int
    ) -> None:
        """Reemplaza el texto por el catálogo formateado por el asistente."""
        prompt = _CATALOG_FORMAT_PROMPT.format(
            products=json.dumps(products, ensure_ascii=False, indent=2)
        )
        formatted = self._assistant.send_message(
            prompt, user_id, result.updated_ai_session_data
        )
        if is_fallback(formatted):
            logger.warning(f"[{user_id}] No se pudo formatear el catálogo, se usa el texto original")
            return

        result.response_text = formatted["response"]["text"]
        result.parse_mode = formatted["response"].get("parse_mode") or "Markdown"
        result.catalog_formatted = True

        images = [
            a
            for a in formatted["actions"]
            if isinstance(a, dict) and a.get("command") == "SEND_IMAGE"
        ]
        result.action_results.extend(self.execute_actions(images, user_id))
