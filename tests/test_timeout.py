"""
Tests para bot/timeout.py — TimeoutManager.

Usa FakeTimer (conftest) para disparar las expiraciones a mano.
"""

from unittest.mock import MagicMock

from bot.timeout import TimeoutManager


class TestStartAndCancel:
    def test_start_arms_timer_in_seconds(self, timer_factory, timers):
        manager = TimeoutManager(timer_factory=timer_factory)
        manager.start(1001, conversation_id=7, minutes=15)
        assert len(timers) == 1
        assert timers[0].interval == 15 * 60
        assert timers[0].started
        assert timers[0].daemon
        assert manager.has_active(1001)
        assert manager.active_conversation(1001) == 7

    def test_default_minutes(self, timer_factory, timers):
        manager = TimeoutManager(default_minutes=2, timer_factory=timer_factory)
        manager.start(1001, 7)
        assert timers[0].interval == 120

    def test_start_replaces_previous_timer(self, timer_factory, timers):
        manager = TimeoutManager(timer_factory=timer_factory)
        manager.start(1001, 7)
        manager.start(1001, 8)
        assert timers[0].cancelled
        assert manager.active_count() == 1
        assert manager.active_conversation(1001) == 8

    def test_renew_is_cancel_plus_start(self, timer_factory, timers):
        manager = TimeoutManager(timer_factory=timer_factory)
        manager.start(1001, 7)
        manager.renew(1001, 7)
        assert len(timers) == 2
        assert timers[0].cancelled
        assert not timers[1].cancelled
        assert manager.active_count() == 1

    def test_cancel(self, timer_factory, timers):
        manager = TimeoutManager(timer_factory=timer_factory)
        manager.start(1001, 7)
        assert manager.cancel(1001) is True
        assert timers[0].cancelled
        assert not manager.has_active(1001)
        assert manager.cancel(1001) is False

    def test_users_are_independent(self, timer_factory):
        manager = TimeoutManager(timer_factory=timer_factory)
        manager.start(1, 10)
        manager.start(2, 20)
        manager.cancel(1)
        assert manager.active_conversation(2) == 20


class TestExpiry:
    def test_fire_calls_handler_and_clears_entry(self, timer_factory, timers):
        handler = MagicMock()
        manager = TimeoutManager(on_expire=handler, timer_factory=timer_factory)
        manager.start(1001, 7)
        timers[0].fire()
        handler.assert_called_once_with(1001, 7)
        assert not manager.has_active(1001)

    def test_handler_sees_expired_entry(self, timer_factory, timers):
        seen = []
        manager = TimeoutManager(timer_factory=timer_factory)
        manager.set_expiry_handler(lambda user_id, conv_id: seen.append(manager.is_expired(user_id)))
        manager.start(1001, 7)
        assert manager.is_expired(1001) is False
        timers[0].fire()
        assert seen == [True]

    def test_handler_error_still_clears_entry(self, timer_factory, timers):
        handler = MagicMock(side_effect=RuntimeError("boom"))
        manager = TimeoutManager(on_expire=handler, timer_factory=timer_factory)
        manager.start(1001, 7)
        timers[0].fire()
        assert not manager.has_active(1001)

    def test_stale_timer_does_nothing(self, timer_factory, timers):
        handler = MagicMock()
        manager = TimeoutManager(on_expire=handler, timer_factory=timer_factory)
        manager.start(1001, 7)
        manager.renew(1001, 7)
        # El primer timer ya fue reemplazado
        timers[0].fire()
        handler.assert_not_called()
        assert manager.has_active(1001)

    def test_renew_during_handler_keeps_new_timer(self, timer_factory, timers):
        manager = TimeoutManager(timer_factory=timer_factory)
        manager.set_expiry_handler(lambda user_id, conv_id: manager.renew(user_id, 8))
        manager.start(1001, 7)
        timers[0].fire()
        assert manager.active_conversation(1001) == 8
        assert manager.is_expired(1001) is False


class TestShutdown:
    def test_shutdown_cancels_everything(self, timer_factory, timers):
        manager = TimeoutManager(timer_factory=timer_factory)
        manager.start(1, 10)
        manager.start(2, 20)
        manager.shutdown()
        assert all(t.cancelled for t in timers)
        assert manager.active_count() == 0

    def test_start_after_shutdown_is_ignored(self, timer_factory, timers):
        manager = TimeoutManager(timer_factory=timer_factory)
        manager.shutdown()
        manager.start(1, 10)
        assert timers == []
        assert manager.active_count() == 0
