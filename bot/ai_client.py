"""
AI Client — Comunicación con el asistente externo.

Protocolo:
    request  {message, user_id, session_data, timestamp}
    response {response: {text, parse_mode?, reply_markup?},
              actions: [{command, parameters}], session_data}

Los errores transitorios (429, 5xx, "overloaded", timeouts) se reintentan
con backoff exponencial; al agotar los intentos se devuelve una respuesta
de fallback marcada en `session_data`.
"""

import logging
import random
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

USER_AGENT = "TecnoExpressBot/1.0"

BACKOFF_BASE_SECONDS = 1.0
BACKOFF_CAP_SECONDS = 30.0
BACKOFF_JITTER = 0.25

FALLBACK_MESSAGES = {
    "overloaded": (
        "😓 Nuestro asistente está recibiendo muchas consultas en este momento. "
        "Por favor, intenta de nuevo en unos minutos."
    ),
    "quota": (
        "⏳ Alcanzamos el límite de consultas del asistente por ahora. "
        "Intenta nuevamente más tarde o escribe /contact para hablar con una persona."
    ),
    "timeout": "⌛ El asistente tardó demasiado en responder. ¿Podrías intentar de nuevo?",
}
DEFAULT_FALLBACK_MESSAGE = (
    "Lo siento, hubo un error procesando tu mensaje. ¿Podrías intentar de nuevo?"
)


class AssistantError(Exception):
    """Error del proveedor de IA, con categoría y si vale la pena reintentar."""

    def __init__(
        self,
        message: str,
        category: str = "unavailable",
        retryable: bool = False,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.status_code = status_code


def classify_http_error(status_code: int, body: str = "") -> AssistantError:
    """Traduce un status HTTP (y el cuerpo) a un AssistantError."""
    lowered = (body or "").lower()
    message = f"HTTP {status_code}: {body[:200]}"
    if status_code in (401, 403):
        return AssistantError(message, "auth", False, status_code)
    if status_code in (503, 529) or "overloaded" in lowered:
        return AssistantError(message, "overloaded", True, status_code)
    if status_code == 429 or "quota" in lowered:
        return AssistantError(message, "quota", True, status_code)
    if status_code >= 500:
        return AssistantError(message, "unavailable", True, status_code)
    return AssistantError(message, "client_error", False, status_code)


def compute_backoff(
    attempt: int,
    base: float = BACKOFF_BASE_SECONDS,
    cap: float = BACKOFF_CAP_SECONDS,
    jitter: float = BACKOFF_JITTER,
    rng: random.Random = None,
) -> float:
    """Espera antes del reintento `attempt` (0-based): base·2ⁿ ±jitter, tope `cap`."""
    rng = rng or random
    delay = base * (2**attempt) * rng.uniform(1 - jitter, 1 + jitter)
    return min(cap, delay)


def validate_response(data: Any) -> Dict[str, Any]:
    """Valida la forma de la respuesta del asistente y normaliza session_data."""
    if not isinstance(data, dict):
        raise AssistantError("La respuesta no es un objeto JSON", "invalid_response")
    response = data.get("response")
    if not isinstance(response, dict) or not isinstance(response.get("text"), str):
        raise AssistantError("response.text ausente o no es texto", "invalid_response")
    if not isinstance(data.get("actions"), list):
        raise AssistantError("actions no es una lista", "invalid_response")
    if not isinstance(data.get("session_data"), dict):
        data["session_data"] = {}
    return data


def build_fallback(category: str, session_data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Respuesta degradada: sin acciones y con la marca `fallback`."""
    data = dict(session_data or {})
    data.update({"fallback": True, "fallback_reason": category})
    return {
        "response": {"text": FALLBACK_MESSAGES.get(category, DEFAULT_FALLBACK_MESSAGE)},
        "actions": [],
        "session_data": data,
    }


def is_fallback(response: Dict[str, Any]) -> bool:
    return bool((response.get("session_data") or {}).get("fallback"))


def strip_fallback(session_data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Copia de session_data sin las marcas de fallback (valen para un solo turno)."""
    return {
        k: v
        for k, v in (session_data or {}).items()
        if k not in ("fallback", "fallback_reason")
    }


class BaseAssistant(ABC):
    """
    Política de reintentos y fallback compartida por los proveedores.

    Las subclases implementan `_request(payload)`, que devuelve el JSON
    crudo del asistente o lanza AssistantError.
    """

    def __init__(self, max_retries: int = 3, sleep=time.sleep, rng: random.Random = None):
        self.max_retries = max(1, max_retries)
        self._sleep = sleep
        self._rng = rng

    @abstractmethod
    def _request(self, payload: Dict[str, Any]) -> Any:
        """JSON crudo del asistente; lanza AssistantError si falla."""

    def send_message(
        self, message: str, user_id: int, session_data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        payload = {
            "message": message,
            "user_id": user_id,
            "session_data": session_data or {},
            "timestamp": datetime.now().isoformat(),
        }
        return self.send(payload)

    def send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Envía con reintentos. Nunca lanza: en el peor caso devuelve fallback."""
        user_id = payload.get("user_id")
        last_error: Optional[AssistantError] = None

        for attempt in range(self.max_retries):
            try:
                return validate_response(self._request(payload))
            except AssistantError as e:
                last_error = e
                if not e.retryable or attempt == self.max_retries - 1:
                    break
                delay = compute_backoff(attempt, rng=self._rng)
                logger.warning(
                    f"[{user_id}] Asistente falló ({e.category}), "
                    f"reintento {attempt + 1}/{self.max_retries - 1} en {delay:.1f}s"
                )
                self._sleep(delay)

        logger.error(
            f"[{user_id}] Asistente no disponible ({last_error.category}): {last_error}"
        )
        return build_fallback(last_error.category, payload.get("session_data"))

    def check_connectivity(self) -> bool:
        """Un solo intento con un mensaje de prueba, sin reintentos."""
        test = {
            "message": "test",
            "user_id": 0,
            "session_data": {},
            "timestamp": datetime.now().isoformat(),
        }
        try:
            validate_response(self._request(test))
            return True
        except AssistantError as e:
            logger.warning(f"Asistente sin conectividad: {e}")
            return False


class AssistantClient(BaseAssistant):
    """Cliente HTTP del asistente externo (POST JSON)."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        http_client: Optional[httpx.Client] = None,
        sleep=time.sleep,
        rng: random.Random = None,
    ):
        super().__init__(max_retries=max_retries, sleep=sleep, rng=rng)
        self._url = url
        self._api_key = api_key
        self._client = http_client or httpx.Client(timeout=timeout)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _request(self, payload: Dict[str, Any]) -> Any:
        try:
            response = self._client.post(self._url, json=payload, headers=self._headers())
        except httpx.TimeoutException as e:
            raise AssistantError(f"Timeout: {e}", "timeout", True) from e
        except httpx.HTTPError as e:
            raise AssistantError(f"Error de red: {e}", "unavailable", True) from e

        if response.status_code >= 400:
            raise classify_http_error(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as e:
            raise AssistantError("La respuesta no es JSON", "invalid_response") from e

        # Algunos gateways devuelven 200 con {"error": "... overloaded ..."}
        if isinstance(data, dict) and "overloaded" in str(data.get("error", "")).lower():
            raise AssistantError(str(data["error"]), "overloaded", True)
        return data

    def close(self) -> None:
        self._client.close()
