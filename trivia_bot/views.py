"""
Discord rendering for trivia sessions: embeds and answer buttons.
"""
import html
from typing import TYPE_CHECKING, Optional

import discord

from .models import Phase
from .quiz_engine import QuizStateMachine

if TYPE_CHECKING:
    from .bot import TriviaBot

COLOR_INFO = 0x6699ff
COLOR_ACTIVE = 0x00ff00
COLOR_CORRECT = 0x2ecc71
COLOR_INCORRECT = 0xe74c3c
COLOR_ERROR = 0xff0000

# Discord rejects button labels longer than 80 characters
MAX_BUTTON_LABEL = 80


def display_text(text: str) -> str:
    """Decode the HTML entities the question bank embeds in its text."""
    return html.unescape(text)


def button_label(answer: str) -> str:
    label = display_text(answer)
    if len(label) > MAX_BUTTON_LABEL:
        label = label[:MAX_BUTTON_LABEL - 1] + "…"
    return label


def build_session_embed(machine: QuizStateMachine) -> discord.Embed:
    """
    Build the embed describing the current phase of a session.

    Args:
        machine: State machine of the session to render

    Returns:
        Embed for the session message
    """
    state = machine.state
    total = len(state.questions)

    if state.phase is Phase.LOADING:
        return discord.Embed(
            title="🎲 Trivia",
            description="Loading questions...",
            color=COLOR_INFO
        )

    if state.phase is Phase.FAILED:
        return discord.Embed(
            title="❌ Trivia Unavailable",
            description=state.error_message,
            color=COLOR_ERROR
        )

    if state.phase is Phase.FINISHED:
        if total == 0:
            return discord.Embed(
                title="🎲 Trivia",
                description="No questions were available for this session.",
                color=COLOR_INFO
            )
        embed = discord.Embed(
            title="🏁 Game Over!",
            description=f"Your final score: **{state.score}** out of **{total}**",
            color=COLOR_INFO
        )
        embed.set_footer(text="Press Play Again to replay the same questions")
        return embed

    question = machine.current_question
    embed = discord.Embed(
        title=f"Question {state.current_index + 1} of {total}",
        description=display_text(question.text),
        color=COLOR_ACTIVE
    )
    embed.add_field(name="Score", value=f"{state.score}/{total}", inline=True)
    if question.category:
        embed.add_field(name="Category", value=display_text(question.category), inline=True)
    if question.difficulty:
        embed.add_field(name="Difficulty", value=question.difficulty.capitalize(), inline=True)

    if state.phase is Phase.FEEDBACK:
        if machine.is_correct(state.selected_answer):
            embed.color = COLOR_CORRECT
            embed.add_field(name="✅ Correct!", value=display_text(question.correct_answer), inline=False)
        else:
            embed.color = COLOR_INCORRECT
            embed.add_field(
                name="❌ Incorrect!",
                value=f"The answer was **{display_text(question.correct_answer)}**",
                inline=False
            )

    return embed


class AnswerButton(discord.ui.Button):
    """Button carrying one presented answer."""

    def __init__(
        self,
        answer: str,
        generation: int,
        style: discord.ButtonStyle,
        disabled: bool,
        row: Optional[int] = None
    ):
        super().__init__(label=button_label(answer), style=style, disabled=disabled, row=row)
        self.answer = answer
        self.generation = generation

    async def callback(self, interaction: discord.Interaction):
        await self.view.bot.handle_answer(interaction, self.answer, self.generation)


class PlayAgainButton(discord.ui.Button):
    """Restarts a finished session with the same questions."""

    def __init__(self):
        super().__init__(label="Play Again", style=discord.ButtonStyle.primary, emoji="🔁")

    async def callback(self, interaction: discord.Interaction):
        await self.view.bot.handle_restart(interaction)


class TriviaView(discord.ui.View):
    """
    Buttons for the current phase of a session.

    ACTIVE shows one enabled button per answer in the presented order.
    FEEDBACK shows the same buttons disabled, with the correct answer in
    green and a wrong selection in red. FINISHED offers Play Again.
    Answer buttons carry the generation they were drawn under.
    """

    def __init__(self, bot: 'TriviaBot', machine: QuizStateMachine):
        super().__init__(timeout=None)
        self.bot = bot
        state = machine.state

        if state.phase is Phase.ACTIVE:
            for answer in state.presented_answers:
                self.add_item(
                    AnswerButton(answer, machine.generation, discord.ButtonStyle.secondary, disabled=False)
                )

        elif state.phase is Phase.FEEDBACK:
            correct_answer = machine.current_question.correct_answer
            for answer in state.presented_answers:
                if answer == correct_answer:
                    style = discord.ButtonStyle.success
                elif answer == state.selected_answer:
                    style = discord.ButtonStyle.danger
                else:
                    style = discord.ButtonStyle.secondary
                self.add_item(AnswerButton(answer, machine.generation, style, disabled=True))

        elif state.phase is Phase.FINISHED and state.questions:
            self.add_item(PlayAgainButton())


def build_session_view(bot: 'TriviaBot', machine: QuizStateMachine) -> Optional[TriviaView]:
    """Build the button view for a session, or None when there is nothing to press."""
    view = TriviaView(bot, machine)
    return view if view.children else None
