"""
Unit tests for timer lifecycle management in DeferredTransition and QuizStateMachine.
Tests cancellation, generation guards and stale timer handling.
"""
import asyncio
import unittest
from unittest.mock import AsyncMock, Mock, patch

from trivia_bot.models import Phase
from trivia_bot.quiz_engine import DeferredTransition, TimerLifecycleLogger
from tests.test_fixtures import AsyncTestHelpers


class TestDeferredTransition(unittest.IsolatedAsyncioTestCase):
    """Test cases for the one-shot deferred transition timer."""

    async def test_runs_sync_callback_after_delay(self):
        callback = Mock()
        timer = DeferredTransition("test", generation=1)

        task = timer.start(0.01, callback)
        self.assertTrue(timer.is_pending)
        await task

        callback.assert_called_once_with()
        self.assertFalse(timer.is_pending)
        self.assertFalse(timer.is_cancelled)

    async def test_awaits_async_callback(self):
        callback = AsyncMock()
        timer = DeferredTransition("test")

        await timer.start(0.01, callback)

        callback.assert_awaited_once()

    async def test_cancel_before_expiry(self):
        callback = Mock()
        timer = DeferredTransition("test")
        task = timer.start(10, callback)

        self.assertTrue(timer.cancel())
        await AsyncTestHelpers.run_until_settled(task)

        self.assertTrue(task.cancelled())
        self.assertTrue(timer.is_cancelled)
        callback.assert_not_called()

    async def test_cancel_after_completion(self):
        timer = DeferredTransition("test")
        await timer.start(0, Mock())

        self.assertFalse(timer.cancel())

    async def test_cancel_without_start(self):
        timer = DeferredTransition("test")
        self.assertFalse(timer.cancel())
        self.assertFalse(timer.is_pending)

    async def test_callback_error_is_logged_and_raised(self):
        timer = DeferredTransition("test")

        with patch.object(TimerLifecycleLogger, 'log_timer_error') as log_error:
            with self.assertRaises(ValueError):
                await timer.start(0, Mock(side_effect=ValueError("boom")))

        log_error.assert_called_once()

    async def test_start_requires_running_loop(self):
        timer = DeferredTransition("test")

        def start_outside_loop():
            return timer.start(0, Mock())

        loop = asyncio.get_running_loop()
        with self.assertRaises(RuntimeError):
            await loop.run_in_executor(None, start_outside_loop)


class TestStateMachineTimerGuards(unittest.IsolatedAsyncioTestCase):
    """Generation guards on the auto-advance timer."""

    async def test_each_answer_bumps_generation(self):
        machine = await AsyncTestHelpers.loaded_machine()
        start_generation = machine.generation

        machine.select_answer("Paris")
        self.assertEqual(machine.generation, start_generation + 1)
        self.assertEqual(machine._timer.generation, machine.generation)
        machine.teardown()

    async def test_restart_replaces_pending_timer(self):
        machine = await AsyncTestHelpers.loaded_machine(advance_delay=10.0)
        machine.select_answer("Paris")
        first_task = machine._timer.task

        machine.restart()
        await AsyncTestHelpers.run_until_settled(first_task)

        self.assertTrue(first_task.cancelled())
        self.assertFalse(machine.has_pending_transition)
        self.assertEqual(machine.phase, Phase.ACTIVE)
        machine.teardown()

    async def test_stale_timer_after_restart_is_logged(self):
        machine = await AsyncTestHelpers.loaded_machine()
        machine.select_answer("Paris")
        stale_generation = machine.generation
        machine.restart()

        with patch.object(TimerLifecycleLogger, 'log_stale_timer') as log_stale:
            await machine._advance(stale_generation)

        log_stale.assert_called_once()
        self.assertEqual(machine.phase, Phase.ACTIVE)
        self.assertEqual(machine.state.current_index, 0)
        machine.teardown()

    async def test_timer_firing_outside_feedback_is_ignored(self):
        machine = await AsyncTestHelpers.loaded_machine()

        with patch.object(TimerLifecycleLogger, 'log_stale_timer') as log_stale:
            await machine._advance(machine.generation)

        log_stale.assert_called_once()
        self.assertEqual(machine.state.current_index, 0)
        machine.teardown()

    async def test_teardown_after_finish_is_safe(self):
        machine = await AsyncTestHelpers.loaded_machine()
        for answer in ("Paris", "42"):
            machine.select_answer(answer)
            await AsyncTestHelpers.wait_for_transition(machine)

        machine.teardown()
        machine.teardown()
        self.assertEqual(machine.phase, Phase.FINISHED)
        self.assertTrue(machine.is_torn_down)


if __name__ == '__main__':
    unittest.main()
