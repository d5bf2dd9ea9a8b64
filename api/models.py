"""
Pydantic models para validación de requests/responses.

Define los schemas del webhook de Telegram y de las respuestas de la API.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# Error Response (RFC 7807 simplificado)


class ErrorResponse(BaseModel):
    """
    Modelo de error estructurado inspirado en RFC 7807.

    Se usa como response_model en todos los errores para garantizar
    un formato consistente y predecible para los consumidores de la API.
    """

    type: str = Field(
        ..., description="Categoría del error (ej: 'validation_error', 'forbidden')"
    )
    title: str = Field(..., description="Título breve del error")
    status: int = Field(..., description="Código HTTP del error")
    detail: str = Field(..., description="Descripción legible del error")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "type": "forbidden",
                    "title": "Token inválido",
                    "status": 403,
                    "detail": "El secret token del webhook no coincide.",
                }
            ]
        }
    }


# Telegram Update (solo los campos que usa el bot)


class TelegramUser(BaseModel):
    id: int
    is_bot: bool = False
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None


class TelegramChat(BaseModel):
    id: int
    type: Optional[str] = None


class PhotoSize(BaseModel):
    file_id: str
    file_unique_id: Optional[str] = None
    width: int = 0
    height: int = 0
    file_size: Optional[int] = None


class TelegramMessage(BaseModel):
    message_id: int
    chat: TelegramChat
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    text: Optional[str] = None
    caption: Optional[str] = None
    photo: Optional[List[PhotoSize]] = None


class CallbackQuery(BaseModel):
    id: str
    from_user: TelegramUser = Field(..., alias="from")
    message: Optional[TelegramMessage] = None
    data: Optional[str] = None


class TelegramUpdate(BaseModel):
    """Update entrante del webhook de Telegram."""

    update_id: int
    message: Optional[TelegramMessage] = None
    callback_query: Optional[CallbackQuery] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "update_id": 10001,
                    "message": {
                        "message_id": 1,
                        "chat": {"id": 123456, "type": "private"},
                        "from": {"id": 123456, "first_name": "Ana"},
                        "text": "quiero ver productos",
                    },
                }
            ]
        }
    }


# Response Models


class WebhookResponse(BaseModel):
    status: str = Field(..., description="ok | ignored | duplicate")
    sent: int = Field(default=0, description="Mensajes entregados a Telegram")


class HealthResponse(BaseModel):
    """Response del health check"""

    status: str = Field(..., description="Estado del servicio (healthy/degraded/unhealthy)")
    version: str = Field(..., description="Versión de la API")
    components: Dict[str, str] = Field(..., description="Estado de componentes")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "status": "healthy",
                    "version": "1.0.0",
                    "components": {"database": "ok", "assistant": "ok", "timeouts": "3 activos"},
                }
            ]
        }
    }


class SurveyStats(BaseModel):
    total: int
    average: float
    distribution: Dict[int, int]


class StatsResponse(BaseModel):
    active_timeouts: int
    cached_sessions: int
    surveys: SurveyStats
