"""
Tests para bot/survey_flow.py — Encuesta de satisfacción.
"""

import sqlite3
from unittest.mock import MagicMock

import pytest

from bot.session import FlowState, Session
from bot.survey_flow import (
    RATING_ACKNOWLEDGEMENTS,
    SURVEY_PROMPT,
    SurveyFlowEngine,
    is_survey_callback,
    parse_rating,
    survey_keyboard,
)

USER = 1001
CHAT = 5001


@pytest.fixture
def engine(db):
    return SurveyFlowEngine(db)


class TestCallbackParsing:
    def test_keyboard_has_five_ratings(self):
        buttons = [b for row in survey_keyboard()["inline_keyboard"] for b in row]
        assert sorted(b["callback_data"] for b in buttons) == [f"survey_{i}" for i in range(1, 6)]

    @pytest.mark.parametrize("data,expected", [("survey_1", 1), ("survey_5", 5), ("survey_x", None), ("menu", None)])
    def test_parse_rating(self, data, expected):
        assert parse_rating(data) == expected

    def test_is_survey_callback(self):
        assert is_survey_callback("survey_3")
        assert not is_survey_callback("ver_catalogo")
        assert not is_survey_callback(None)


class TestPrompt:
    def test_send_prompt_enters_waiting_state(self, engine):
        session = Session()
        messages = engine.send_prompt(CHAT, session, conversation_id=9)
        assert messages[0].text == SURVEY_PROMPT
        assert messages[0].reply_markup == survey_keyboard()
        assert session.state == FlowState.SURVEY_WAITING
        assert engine.is_waiting(session)
        assert session.survey.conversation_id == 9


class TestResponse:
    def test_valid_rating_is_stored(self, engine, db):
        conv = db.open_conversation(USER)
        db.end_conversation(conv["id"])
        session = Session()
        engine.send_prompt(CHAT, session, conv["id"])

        messages = engine.process_response(USER, CHAT, session, 5)
        assert messages[0].text == RATING_ACKNOWLEDGEMENTS[5]
        assert session.state == FlowState.IDLE

        stats = db.get_survey_stats()
        assert stats["total"] == 1
        assert stats["distribution"][5] == 1

    def test_low_rating_mentions_contact(self, engine):
        session = Session()
        engine.send_prompt(CHAT, session, None)
        messages = engine.process_response(USER, CHAT, session, 1)
        assert "/contact" in messages[0].text

    def test_invalid_rating_keeps_waiting(self, engine, db):
        session = Session()
        engine.send_prompt(CHAT, session, None)
        messages = engine.process_response(USER, CHAT, session, 7)
        assert "Calificación inválida" in messages[0].text
        assert engine.is_waiting(session)
        assert db.get_survey_stats()["total"] == 0

    def test_no_pending_survey(self, engine):
        messages = engine.process_response(USER, CHAT, Session(), 4)
        assert messages[0].text == "❌ No hay ninguna encuesta pendiente."

    def test_db_error_keeps_waiting(self):
        broken = MagicMock()
        broken.create_survey.side_effect = sqlite3.OperationalError("database is locked")
        engine = SurveyFlowEngine(broken)
        session = Session()
        engine.send_prompt(CHAT, session, 3)

        messages = engine.process_response(USER, CHAT, session, 4)
        assert "Error registrando tu respuesta" in messages[0].text
        assert engine.is_waiting(session)

    def test_cancel(self, engine):
        session = Session()
        engine.send_prompt(CHAT, session, 3)
        engine.cancel(USER, CHAT, session)
        assert session.state == FlowState.IDLE
