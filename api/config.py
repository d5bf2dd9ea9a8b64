"""
Configuración centralizada del bot de Tecno Express.

Usa Pydantic BaseSettings para:
- Validar TODAS las variables de entorno al startup
- Proveer tipos seguros y defaults documentados
- Eliminar lecturas de os.environ dispersas en múltiples módulos
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


# Raíz del proyecto (donde vive .env)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Configuración tipada y validada del bot."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",  # Ignorar env vars no declaradas
    )

    # Telegram
    BOT_TOKEN: str = ""
    TELEGRAM_API_BASE: str = "https://api.telegram.org"
    WEBHOOK_SECRET_TOKEN: Optional[str] = None

    # Asistente de IA
    AI_PROVIDER: Literal["http", "groq"] = "http"
    AI_EXTERNAL_URL: str = "http://localhost:3001/api/ai"
    AI_API_KEY: Optional[str] = None
    AI_TIMEOUT_SECONDS: float = 30.0
    AI_MAX_RETRIES: int = 3
    CATALOG_AI_FORMATTING: bool = True

    # Groq (solo con AI_PROVIDER=groq)
    GROQ_API_KEY: Optional[str] = None
    LLM_MODEL: str = "llama-3.3-70b-versatile"

    # Conversaciones
    CONVERSATION_TIMEOUT_MINUTES: float = 15

    # Conversión de moneda
    CURRENCY_ENABLED: bool = True
    DOLAR_API_URL: str = "https://ve.dolarapi.com/v1/dolares/oficial"
    CURRENCY_CACHE_SECONDS: int = 300

    # Database
    DATABASE_PATH: str = "data/bot.db"

    # Logging / API
    LOG_LEVEL: str = "INFO"
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    @property
    def db_full_path(self) -> Path:
        """Ruta absoluta a la base de datos."""
        db = Path(self.DATABASE_PATH)
        if db.is_absolute():
            return db
        return PROJECT_ROOT / db


@lru_cache
def get_settings() -> Settings:
    """Singleton de configuración (cacheado)."""
    return Settings()
