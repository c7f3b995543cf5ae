"""
Unit tests for the Discord embeds and answer buttons.
"""
import unittest
from unittest.mock import AsyncMock, Mock

import discord

from trivia_bot.models import Question
from trivia_bot.quiz_engine import QuizStateMachine
from trivia_bot.views import (
    AnswerButton,
    PlayAgainButton,
    build_session_embed,
    build_session_view,
    button_label,
    display_text,
)
from tests.test_fixtures import AsyncTestHelpers


class TestDisplayHelpers(unittest.TestCase):
    """Test cases for text helpers."""

    def test_display_text_unescapes_entities(self):
        self.assertEqual(display_text("Rock &amp; Roll &quot;quoted&quot; &#039;x&#039;"),
                         'Rock & Roll "quoted" \'x\'')

    def test_button_label_is_truncated(self):
        label = button_label("a" * 120)
        self.assertEqual(len(label), 80)
        self.assertTrue(label.endswith("…"))
        self.assertEqual(button_label("short"), "short")


class TestSessionEmbed(unittest.IsolatedAsyncioTestCase):
    """Test cases for build_session_embed."""

    async def test_loading_embed(self):
        embed = build_session_embed(QuizStateMachine())
        self.assertEqual(embed.description, "Loading questions...")

    async def test_failed_embed(self):
        machine = QuizStateMachine()
        machine.on_load_failed("Failed to fetch questions.")
        embed = build_session_embed(machine)
        self.assertEqual(embed.description, "Failed to fetch questions.")

    async def test_active_embed(self):
        questions = (Question("Who wrote &quot;Hamlet&quot;?", "Shakespeare", ("Marlowe", "Jonson", "Kyd"),
                              category="Art &amp; Literature", difficulty="medium"),)
        machine = await AsyncTestHelpers.loaded_machine(questions)

        embed = build_session_embed(machine)

        self.assertEqual(embed.title, "Question 1 of 1")
        self.assertEqual(embed.description, 'Who wrote "Hamlet"?')
        fields = {field.name: field.value for field in embed.fields}
        self.assertEqual(fields["Score"], "0/1")
        self.assertEqual(fields["Category"], "Art & Literature")
        self.assertEqual(fields["Difficulty"], "Medium")

    async def test_feedback_embed_correct(self):
        machine = await AsyncTestHelpers.loaded_machine(advance_delay=10.0)
        machine.select_answer("Paris")

        embed = build_session_embed(machine)

        names = [field.name for field in embed.fields]
        self.assertIn("✅ Correct!", names)
        self.assertEqual(embed.fields[0].value, "1/2")
        machine.teardown()

    async def test_feedback_embed_incorrect(self):
        machine = await AsyncTestHelpers.loaded_machine(advance_delay=10.0)
        machine.select_answer("London")

        embed = build_session_embed(machine)

        incorrect = [field for field in embed.fields if field.name == "❌ Incorrect!"]
        self.assertEqual(len(incorrect), 1)
        self.assertIn("Paris", incorrect[0].value)
        machine.teardown()

    async def test_finished_embed(self):
        machine = await AsyncTestHelpers.loaded_machine()
        for answer in ("Paris", "7"):
            machine.select_answer(answer)
            await AsyncTestHelpers.wait_for_transition(machine)

        embed = build_session_embed(machine)

        self.assertEqual(embed.title, "🏁 Game Over!")
        self.assertIn("**1** out of **2**", embed.description)

    async def test_empty_batch_embed(self):
        machine = QuizStateMachine()
        machine.on_load_succeeded([])
        embed = build_session_embed(machine)
        self.assertIn("No questions", embed.description)


class TestTriviaView(unittest.IsolatedAsyncioTestCase):
    """Test cases for the answer buttons."""

    async def asyncSetUp(self):
        self.bot = Mock()
        self.machine = await AsyncTestHelpers.loaded_machine(advance_delay=10.0)

    async def asyncTearDown(self):
        self.machine.teardown()

    async def test_active_view_has_enabled_buttons_in_presented_order(self):
        view = build_session_view(self.bot, self.machine)

        self.assertEqual([b.answer for b in view.children], self.machine.state.presented_answers)
        self.assertTrue(all(isinstance(b, AnswerButton) and not b.disabled for b in view.children))

    async def test_feedback_view_marks_answers(self):
        self.machine.select_answer("London")

        view = build_session_view(self.bot, self.machine)

        styles = {b.answer: b.style for b in view.children}
        self.assertEqual(styles["Paris"], discord.ButtonStyle.success)
        self.assertEqual(styles["London"], discord.ButtonStyle.danger)
        self.assertEqual(styles["Berlin"], discord.ButtonStyle.secondary)
        self.assertTrue(all(b.disabled for b in view.children))
        self.assertEqual([b.answer for b in view.children], self.machine.state.presented_answers)

    async def test_finished_view_offers_play_again(self):
        machine = await AsyncTestHelpers.loaded_machine(
            (Question("Q?", "a", ("b", "c", "d")),)
        )
        machine.select_answer("a")
        await AsyncTestHelpers.wait_for_transition(machine)

        view = build_session_view(self.bot, machine)

        self.assertEqual(len(view.children), 1)
        self.assertIsInstance(view.children[0], PlayAgainButton)

    async def test_no_view_when_loading_or_failed(self):
        self.assertIsNone(build_session_view(self.bot, QuizStateMachine()))

        failed = QuizStateMachine()
        failed.on_load_failed("nope")
        self.assertIsNone(build_session_view(self.bot, failed))

    async def test_button_callback_delegates_to_bot(self):
        self.bot.handle_answer = AsyncMock()
        view = build_session_view(self.bot, self.machine)
        button = view.children[0]
        interaction = Mock()

        await button.callback(interaction)

        self.bot.handle_answer.assert_awaited_once_with(interaction, button.answer, self.machine.generation)

    async def test_buttons_carry_generation_they_were_drawn_under(self):
        before = build_session_view(self.bot, self.machine)
        self.machine.restart()
        after = build_session_view(self.bot, self.machine)

        self.assertTrue(all(b.generation == before.children[0].generation for b in before.children))
        self.assertTrue(all(b.generation == self.machine.generation for b in after.children))
        self.assertNotEqual(before.children[0].generation, after.children[0].generation)


if __name__ == '__main__':
    unittest.main()
