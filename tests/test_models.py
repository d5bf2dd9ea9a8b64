"""
Tests para los modelos Pydantic de la API y la configuración.

Cubre:
- TelegramUpdate (alias `from`, fotos, callback_query)
- ErrorResponse (formato RFC 7807)
- Settings (defaults y ruta de la base)
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from api.config import PROJECT_ROOT, Settings
from api.models import ErrorResponse, StatsResponse, TelegramUpdate


class TestTelegramUpdate:
    """Validación de updates entrantes."""

    def test_text_message_with_from_alias(self):
        update = TelegramUpdate.model_validate(
            {
                "update_id": 1,
                "message": {
                    "message_id": 10,
                    "chat": {"id": 5001},
                    "from": {"id": 1001, "first_name": "Ana"},
                    "text": "hola",
                },
            }
        )
        assert update.message.from_user.id == 1001
        assert update.message.text == "hola"
        assert update.callback_query is None

    def test_photo_sizes(self):
        update = TelegramUpdate.model_validate(
            {
                "update_id": 2,
                "message": {
                    "message_id": 11,
                    "chat": {"id": 5001},
                    "photo": [{"file_id": "a", "width": 90, "height": 90}],
                },
            }
        )
        assert update.message.photo[0].file_id == "a"
        assert update.message.from_user is None

    def test_callback_requires_from(self):
        with pytest.raises(ValidationError):
            TelegramUpdate.model_validate(
                {"update_id": 3, "callback_query": {"id": "cb", "data": "survey_5"}}
            )

    def test_update_id_required(self):
        with pytest.raises(ValidationError):
            TelegramUpdate.model_validate({"message": None})


class TestResponses:
    def test_error_response(self):
        err = ErrorResponse(type="forbidden", title="Token inválido", status=403, detail="x")
        assert err.model_dump()["status"] == 403

    def test_stats_response(self):
        stats = StatsResponse(
            active_timeouts=1,
            cached_sessions=2,
            surveys={"total": 0, "average": 0.0, "distribution": {1: 0, 2: 0, 3: 0, 4: 0, 5: 0}},
        )
        assert stats.surveys.total == 0


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.CONVERSATION_TIMEOUT_MINUTES == 15
        assert settings.AI_MAX_RETRIES == 3
        assert settings.AI_PROVIDER == "http"
        assert settings.CATALOG_AI_FORMATTING is True

    def test_relative_database_path(self):
        settings = Settings(_env_file=None, DATABASE_PATH="data/bot.db")
        assert settings.db_full_path == PROJECT_ROOT / "data" / "bot.db"

    def test_absolute_database_path(self, tmp_path):
        settings = Settings(_env_file=None, DATABASE_PATH=str(tmp_path / "x.db"))
        assert settings.db_full_path == Path(tmp_path / "x.db")

    def test_invalid_provider(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, AI_PROVIDER="openai")
