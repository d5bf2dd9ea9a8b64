"""
Groq Assistant — Proveedor de IA basado en Groq (Llama 3.3).

Habla el mismo protocolo JSON que el asistente externo: el modelo recibe
un prompt de sistema que le exige responder SOLO con
{response, actions, session_data}.
"""

import json
import logging
import random
import time
from typing import Any, Dict, Optional

import groq
from groq import Groq

from bot.ai_client import AssistantError, BaseAssistant, classify_http_error

logger = logging.getLogger(__name__)


_SYSTEM_PROMPT = """\
Eres Max, el asistente de atención al cliente de Tecno Express, una tienda de
electrodomésticos. Ayudas con productos, garantías, horarios y ubicación.

Responde SIEMPRE y ÚNICAMENTE con un JSON válido:
{
  "response": {"text": "<respuesta al usuario>", "parse_mode": "Markdown"},
  "actions": [{"command": "<COMANDO>", "parameters": {}}],
  "session_data": {"contexto": "<lo que quieras recordar>"}
}

Comandos disponibles:
- CONSULT_CATALOG: consultar productos (parameters: filters {brand, min_price, max_price}, limit)
- CONSULT_GUARANTEES: consultar garantías del usuario (parameters: user_id)
- REGISTER_GUARANTEE: iniciar registro de garantía (sin parámetros)
- CONSULT_SCHEDULE: consultar horarios (sin parámetros)
- SEND_GEOLOCATION: enviar ubicación de la tienda (sin parámetros)
- SEND_IMAGE: mostrar la foto de un producto (parameters: product_id, file_id)
- END_CONVERSATION: terminar la conversación (parameters: reason)

Reglas:
1. Tono amigable y profesional, con emojis apropiados.
2. Si el usuario se despide, usa END_CONVERSATION.
3. Si no hace falta ninguna acción, "actions" es [].
4. Mantén el contexto en session_data.
5. Nada de texto fuera del JSON.
"""


def _build_context(payload: Dict[str, Any]) -> str:
    session_json = json.dumps(payload.get("session_data") or {}, ensure_ascii=False)
    return (
        "CONTEXTO DE LA CONVERSACIÓN:\n"
        f"- Usuario ID: {payload.get('user_id')}\n"
        f"- Datos de sesión: {session_json}\n"
        f"- Mensaje del usuario: \"{payload.get('message', '')}\"\n\n"
        "Responde con el JSON apropiado."
    )


class GroqAssistant(BaseAssistant):
    """Asistente que genera las respuestas con un LLM de Groq."""

    def __init__(
        self,
        api_key: str,
        model: str = "llama-3.3-70b-versatile",
        timeout: float = 30.0,
        max_retries: int = 3,
        client: Optional[Groq] = None,
        sleep=time.sleep,
        rng: random.Random = None,
    ):
        super().__init__(max_retries=max_retries, sleep=sleep, rng=rng)
        # Los reintentos los maneja BaseAssistant, no el SDK
        self._client = client or Groq(api_key=api_key, timeout=timeout, max_retries=0)
        self._model = model

    def _request(self, payload: Dict[str, Any]) -> Any:
        try:
            completion = self._client.chat.completions.create(
                messages=[
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": _build_context(payload)},
                ],
                model=self._model,
                temperature=0.3,
                max_tokens=1024,
            )
        except groq.APITimeoutError as e:
            raise AssistantError(f"Timeout: {e}", "timeout", True) from e
        except groq.APIConnectionError as e:
            raise AssistantError(f"Error de red: {e}", "unavailable", True) from e
        except groq.APIStatusError as e:
            raise classify_http_error(e.status_code, str(e)) from e

        raw = completion.choices[0].message.content or ""
        return self._parse_response(raw)

    def _parse_response(self, raw: str) -> Any:
        """Parsea la respuesta JSON del LLM."""
        # Limpiar posible markdown
        clean = raw.strip().strip("`").strip()
        if clean.startswith("json"):
            clean = clean[4:].strip()
        try:
            return json.loads(clean)
        except json.JSONDecodeError as e:
            logger.warning(f"No se pudo parsear respuesta de Groq: {raw[:200]} ({e})")
            raise AssistantError("Respuesta del LLM no es JSON", "invalid_response") from e
