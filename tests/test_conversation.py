"""
Tests para bot/conversation.py — SessionManager.
"""

import sqlite3
from unittest.mock import MagicMock

from bot.conversation import SessionManager
from bot.session import FlowState, Session


class TestLoad:
    def test_unknown_user_gets_idle_session(self, db):
        manager = SessionManager(db)
        session = manager.load(1001)
        assert session.state == FlowState.IDLE
        assert manager.cached_count() == 1

    def test_load_returns_cached_instance(self, db):
        manager = SessionManager(db)
        assert manager.load(1001) is manager.load(1001)

    def test_restores_persisted_session(self, db):
        session = Session()
        session.enter_survey(5)
        db.save_session_json(1001, session.to_json())

        restored = SessionManager(db).load(1001)
        assert restored.state == FlowState.SURVEY_WAITING
        assert restored.survey.conversation_id == 5

    def test_malformed_json_falls_back_to_idle(self, db):
        db.save_session_json(1001, "{no es json")
        session = SessionManager(db).load(1001)
        assert session.state == FlowState.IDLE
        assert session.flow is None

    def test_inconsistent_session_falls_back_to_idle(self, db):
        db.save_session_json(1001, '{"state": "guarantee_flow", "flow": null}')
        assert SessionManager(db).load(1001).state == FlowState.IDLE

    def test_db_error_falls_back_to_idle(self):
        broken = MagicMock()
        broken.get_session_json.side_effect = sqlite3.OperationalError("database is locked")
        assert SessionManager(broken).load(1001).state == FlowState.IDLE


class TestSave:
    def test_save_persists_json(self, db):
        manager = SessionManager(db)
        session = manager.load(1001)
        session.mark_ended()
        assert manager.save(1001, session) is True
        assert Session.from_json(db.get_session_json(1001)).state == FlowState.CONVERSATION_ENDED

    def test_save_error_is_not_raised(self):
        broken = MagicMock()
        broken.save_session_json.side_effect = sqlite3.OperationalError("disk I/O error")
        manager = SessionManager(broken)
        session = Session()
        assert manager.save(1001, session) is False
        # La copia en memoria sigue disponible
        assert manager.load(1001) is session


class TestLocks:
    def test_same_lock_per_user(self, db):
        manager = SessionManager(db)
        assert manager.lock_for(1) is manager.lock_for(1)
        assert manager.lock_for(1) is not manager.lock_for(2)
