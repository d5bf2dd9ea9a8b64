"""
Configuración compartida de fixtures para los tests del bot de Tecno Express.

Provee:
- Settings de prueba (sin necesidad de .env real)
- DBService sobre una base temporal con schema + seeds
- Temporizadores manuales (FakeTimer) para el TimeoutManager
- Mock del asistente de IA y del transporte de Telegram
- TestClient de FastAPI con dependency overrides
"""

import sqlite3
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

# Agregar raíz del proyecto al path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from api import main as api_main
from api.config import Settings, get_settings
from api.main import app, get_supervisor, get_transport
from bot.ai_client import BaseAssistant
from bot.db_service import SCHEMA_PATH, SEED_PATH, DBService
from bot.dispatcher import ActionDispatcher
from bot.supervisor import Supervisor
from bot.timeout import TimeoutManager


# Settings de prueba


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings con valores seguros para testing (no necesita .env)."""
    return Settings(
        BOT_TOKEN="123456:TEST-TOKEN",
        WEBHOOK_SECRET_TOKEN="secret_123",
        AI_PROVIDER="http",
        AI_EXTERNAL_URL="http://ai.test/api/ai",
        AI_API_KEY="test-key-fake-12345",
        CURRENCY_ENABLED=False,
        DATABASE_PATH=str(tmp_path / "bot.db"),
    )


# Base de datos


@pytest.fixture
def db(tmp_path) -> DBService:
    """DBService con schema + seeds en un DB temporal."""
    db_file = tmp_path / "test.db"
    conn = sqlite3.connect(db_file)
    with open(SCHEMA_PATH, "r", encoding="utf-8") as f:
        conn.executescript(f.read())
    with open(SEED_PATH, "r", encoding="utf-8") as f:
        conn.executescript(f.read())
    conn.close()
    return DBService(db_file)


# Temporizadores manuales


class FakeTimer:
    """Reemplazo de threading.Timer: el test decide cuándo dispara."""

    def __init__(self, interval, function, args=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args)


@pytest.fixture
def timers():
    """Lista de FakeTimer creados, en orden."""
    return []


@pytest.fixture
def timer_factory(timers):
    def factory(interval, function, args=None):
        timer = FakeTimer(interval, function, args)
        timers.append(timer)
        return timer

    return factory


# Asistente de IA


def make_ai_response(text="¡Hola! Soy Max, ¿en qué puedo ayudarte?", actions=None, session_data=None):
    """Respuesta del asistente con el formato del protocolo."""
    return {
        "response": {"text": text},
        "actions": actions or [],
        "session_data": session_data if session_data is not None else {"contexto": "saludo"},
    }


@pytest.fixture
def ai_response():
    return make_ai_response


@pytest.fixture
def mock_assistant():
    """Asistente que responde siempre un saludo sin acciones."""
    mock = MagicMock(spec=BaseAssistant)
    mock.send_message.return_value = make_ai_response()
    mock.check_connectivity.return_value = True
    return mock


# Supervisor


@pytest.fixture
def mock_transport():
    mock = MagicMock()
    mock.deliver.side_effect = lambda messages: len(messages)
    return mock


@pytest.fixture
def timeouts(timer_factory) -> TimeoutManager:
    return TimeoutManager(default_minutes=15, timer_factory=timer_factory)


@pytest.fixture
def dispatcher(mock_assistant, db) -> ActionDispatcher:
    return ActionDispatcher(mock_assistant, db, currency=None, format_catalog=False)


@pytest.fixture
def supervisor(db, dispatcher, mock_transport, timeouts) -> Supervisor:
    return Supervisor(
        db=db,
        dispatcher=dispatcher,
        transport=mock_transport,
        timeouts=timeouts,
        timeout_minutes=15,
    )


# TestClient con DI overrides


@pytest.fixture
def mock_supervisor():
    mock = MagicMock(spec=Supervisor)
    mock.stats.return_value = {
        "active_timeouts": 2,
        "cached_sessions": 3,
        "surveys": {"total": 1, "average": 5.0, "distribution": {1: 0, 2: 0, 3: 0, 4: 0, 5: 1}},
    }
    mock.resume_active_conversations.return_value = 0
    mock.check_assistant.return_value = True
    return mock


@pytest.fixture
def client(test_settings, mock_supervisor, mock_transport) -> TestClient:
    """
    TestClient de FastAPI con dependency overrides.

    Reemplaza las dependencias reales por mocks:
    - get_settings → test_settings (sin .env)
    - get_supervisor → mock_supervisor (sin DB ni asistente)
    - get_transport → mock_transport (sin llamar a Telegram)
    """
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_supervisor] = lambda: mock_supervisor
    app.dependency_overrides[get_transport] = lambda: mock_transport
    api_main._seen_updates.clear()

    with TestClient(app, raise_server_exceptions=False) as c:
        yield c

    # Limpiar overrides después del test
    app.dependency_overrides.clear()
