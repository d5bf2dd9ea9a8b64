"""
FastAPI Application - Webhook de Telegram para el bot de Tecno Express
- Settings centralizado (Pydantic BaseSettings via config.py)
- Dependency Injection con Depends()
- HTTP Status Codes correctos + Error Handler global
- Async con asyncio.to_thread para operaciones bloqueantes

Endpoints:
- GET  /          → Raíz informativa
- GET  /health    → Health check
- GET  /stats     → Temporizadores activos y encuestas
- POST /webhook   → Updates de Telegram (texto, fotos, callbacks)
"""

import asyncio
import logging
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.config import Settings, get_settings
from api.models import (
    ErrorResponse,
    HealthResponse,
    StatsResponse,
    TelegramUpdate,
    WebhookResponse,
)
from bot.ai_client import AssistantClient, BaseAssistant
from bot.currency import CurrencyConverter
from bot.db_service import DBService
from bot.dispatcher import ActionDispatcher
from bot.groq_assistant import GroqAssistant
from bot.outbound import OutboundMessage, text_message
from bot.supervisor import TECHNICAL_ERROR, Supervisor
from bot.transport import MessageTransport, TelegramTransport

# Logging
logging.basicConfig(
    level=get_settings().LOG_LEVEL.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "1.0.0"
CANCEL_COMMANDS = {"/cancel", "/cancelar"}
CONTACT_COMMANDS = {"/contact", "/contacto"}


# Deduplicación de updates: Telegram reintenta si el webhook tarda
_MAX_SEEN = 500
_SEEN_TTL = 300  # 5 minutos
_seen_updates: OrderedDict[int, float] = OrderedDict()


def _is_duplicate_update(update_id: int) -> bool:
    """True si el update ya se procesó en los últimos _SEEN_TTL segundos."""
    now = time.monotonic()
    # Purgar entradas vencidas
    while _seen_updates:
        oldest_key, oldest_time = next(iter(_seen_updates.items()))
        if now - oldest_time > _SEEN_TTL:
            _seen_updates.pop(oldest_key)
        else:
            break
    if update_id in _seen_updates:
        return True
    _seen_updates[update_id] = now
    # Tope de tamaño
    while len(_seen_updates) > _MAX_SEEN:
        _seen_updates.popitem(last=False)
    return False


# Dependency Injection
# Singletons inyectables via Depends() para facilitar testing

_supervisor: Supervisor | None = None
_transport: TelegramTransport | None = None


def build_assistant(settings: Settings) -> BaseAssistant:
    """Proveedor de IA según AI_PROVIDER."""
    if settings.AI_PROVIDER == "groq":
        if not settings.GROQ_API_KEY:
            raise ValueError("AI_PROVIDER=groq requiere GROQ_API_KEY")
        return GroqAssistant(
            api_key=settings.GROQ_API_KEY,
            model=settings.LLM_MODEL,
            timeout=settings.AI_TIMEOUT_SECONDS,
            max_retries=settings.AI_MAX_RETRIES,
        )
    return AssistantClient(
        url=settings.AI_EXTERNAL_URL,
        api_key=settings.AI_API_KEY,
        timeout=settings.AI_TIMEOUT_SECONDS,
        max_retries=settings.AI_MAX_RETRIES,
    )


def get_transport(settings: Settings = Depends(get_settings)) -> MessageTransport:
    """
    Dependency que provee el cliente de Telegram.

    Permite override en tests via app.dependency_overrides[get_transport].
    """
    global _transport
    if _transport is None:
        _transport = TelegramTransport(
            bot_token=settings.BOT_TOKEN, api_base=settings.TELEGRAM_API_BASE
        )
    return _transport


def get_supervisor(settings: Settings = Depends(get_settings)) -> Supervisor:
    """
    Dependency que provee el Supervisor.

    Permite override en tests via app.dependency_overrides[get_supervisor].
    """
    global _supervisor
    if _supervisor is None:
        logger.info("Inicializando Supervisor...")
        db = DBService(settings.db_full_path)
        db.ensure_schema()
        currency = (
            CurrencyConverter(
                api_url=settings.DOLAR_API_URL, ttl_seconds=settings.CURRENCY_CACHE_SECONDS
            )
            if settings.CURRENCY_ENABLED
            else None
        )
        dispatcher = ActionDispatcher(
            assistant=build_assistant(settings),
            db=db,
            currency=currency,
            format_catalog=settings.CATALOG_AI_FORMATTING,
        )
        _supervisor = Supervisor(
            db=db,
            dispatcher=dispatcher,
            transport=get_transport(settings),
            timeout_minutes=settings.CONVERSATION_TIMEOUT_MINUTES,
        )
        logger.info("Supervisor inicializado correctamente")
    return _supervisor


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan: crea el Supervisor, rearma timeouts y los cancela al cerrar."""
    logger.info("Tecno Express Bot API iniciando...")
    supervisor = None
    try:
        # Respeta los overrides de los tests
        override = app.dependency_overrides.get(get_supervisor)
        supervisor = override() if override else get_supervisor(get_settings())
        await asyncio.to_thread(supervisor.resume_active_conversations)
    except Exception as e:
        logger.error(f"Error inicializando supervisor: {e}")

    yield

    if supervisor is not None:
        supervisor.shutdown()
    logger.info("Tecno Express Bot API cerrando...")


# FastAPI App

app = FastAPI(
    title="Tecno Express Bot API",
    description="Webhook de Telegram para el asistente de atención al cliente",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    responses={
        422: {"model": ErrorResponse, "description": "Error de validación"},
        500: {"model": ErrorResponse, "description": "Error interno"},
    },
)


# Global Error Handlers


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Errores de validación Pydantic → 422 con formato ErrorResponse."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            type="validation_error",
            title="Datos de entrada inválidos",
            status=422,
            detail=str(exc.errors()),
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """HTTPException → ErrorResponse con el status original."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            type="http_error",
            title=exc.detail if isinstance(exc.detail, str) else "Error",
            status=exc.status_code,
            detail=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """
    Excepción no manejada → 500 genérico.

    Loguea el error real pero devuelve mensaje genérico al cliente
    para no filtrar detalles internos.
    """
    logger.error(f"Error no manejado en {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            type="internal_error",
            title="Error Interno",
            status=500,
            detail="Error interno del servidor. Intenta nuevamente más tarde.",
        ).model_dump(),
    )


# Update routing


def route_update(supervisor: Supervisor, update: TelegramUpdate) -> Optional[List[OutboundMessage]]:
    """Traduce un update de Telegram a la entrada correspondiente del Supervisor."""
    callback = update.callback_query
    if callback is not None:
        chat_id = callback.message.chat.id if callback.message else callback.from_user.id
        message_id = callback.message.message_id if callback.message else None
        return supervisor.handle_callback(
            callback.from_user.id, chat_id, callback.data or "", message_id=message_id
        )

    message = update.message
    if message is None or message.from_user is None:
        return None

    user = message.from_user
    user_info = user.model_dump(include={"username", "first_name", "last_name"})

    if message.photo:
        photos = [p.model_dump() for p in message.photo]
        return supervisor.handle_inbound_photo(user.id, message.chat.id, photos, user_info)

    if message.text:
        command = message.text.strip().split()[0].lower() if message.text.strip() else ""
        if command in CANCEL_COMMANDS:
            return supervisor.cancel_current(user.id, message.chat.id)
        if command in CONTACT_COMMANDS:
            return supervisor.contact_info(user.id, message.chat.id)
        return supervisor.handle_inbound_text(user.id, message.chat.id, message.text, user_info)

    return None


def _chat_id_of(update: TelegramUpdate) -> Optional[int]:
    if update.callback_query is not None:
        cq = update.callback_query
        return cq.message.chat.id if cq.message else cq.from_user.id
    if update.message is not None:
        return update.message.chat.id
    return None


# Endpoints


@app.get("/", tags=["Root"])
async def root():
    """Endpoint raíz"""
    return {
        "message": "Tecno Express Bot API",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(
    settings: Settings = Depends(get_settings),
    supervisor: Supervisor = Depends(get_supervisor),
):
    """
    Health check endpoint.

    Verifica el estado de:
    - Base de datos
    - Conectividad con el asistente de IA
    - Token del bot de Telegram
    """
    components = {}
    overall_status = "healthy"

    if settings.db_full_path.exists():
        components["database"] = "ok"
    else:
        components["database"] = "missing"
        overall_status = "degraded"

    if settings.AI_PROVIDER == "groq" and not settings.GROQ_API_KEY:
        components["assistant"] = "no_api_key"
        overall_status = "degraded"
    elif await asyncio.to_thread(supervisor.check_assistant):
        components["assistant"] = "ok"
    else:
        components["assistant"] = "unreachable"
        overall_status = "degraded"

    if not settings.BOT_TOKEN:
        components["telegram"] = "no_bot_token"
        overall_status = "degraded"
    else:
        components["telegram"] = "ok"

    components["timeouts"] = f"{supervisor.stats()['active_timeouts']} activos"

    return HealthResponse(status=overall_status, version=VERSION, components=components)


@app.get("/stats", response_model=StatsResponse, tags=["Stats"])
async def get_stats(supervisor: Supervisor = Depends(get_supervisor)):
    """Temporizadores activos, sesiones en memoria y estadísticas de encuestas."""
    return await asyncio.to_thread(supervisor.stats)


@app.post("/webhook", response_model=WebhookResponse, tags=["Webhook"])
async def handle_webhook(
    update: TelegramUpdate,
    request: Request,
    supervisor: Supervisor = Depends(get_supervisor),
    transport: MessageTransport = Depends(get_transport),
    settings: Settings = Depends(get_settings),
):
    """
    Recibe updates de Telegram.

    El Supervisor decide si el evento continúa el flujo de garantía,
    responde la encuesta o se envía al asistente de IA.
    """
    if settings.WEBHOOK_SECRET_TOKEN:
        token = request.headers.get("X-Telegram-Bot-Api-Secret-Token")
        if token != settings.WEBHOOK_SECRET_TOKEN:
            logger.warning("❌ Webhook con secret token inválido")
            raise HTTPException(status_code=403, detail="Token inválido")

    if _is_duplicate_update(update.update_id):
        logger.info(f"Update duplicado ignorado: {update.update_id}")
        return WebhookResponse(status="duplicate")

    try:
        messages = await asyncio.to_thread(route_update, supervisor, update)
    except Exception as e:
        logger.error(f"Error en supervisor: {e}", exc_info=True)
        chat_id = _chat_id_of(update)
        messages = [text_message(chat_id, TECHNICAL_ERROR)] if chat_id else []

    if messages is None:
        logger.info(f"Update {update.update_id} ignorado (sin texto, foto ni callback)")
        return WebhookResponse(status="ignored")

    sent = await asyncio.to_thread(transport.deliver, messages)
    return WebhookResponse(status="ok", sent=sent)


# Error Handler 404


@app.exception_handler(404)
async def not_found_handler(request: Request, exc):
    """Handler para 404"""
    return JSONResponse(
        status_code=404,
        content=ErrorResponse(
            type="not_found",
            title="No Encontrado",
            status=404,
            detail=f"El endpoint '{request.url.path}' no existe.",
        ).model_dump(),
    )


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
