import asyncio
import discord
from discord.ext import commands
import logging
import os
from typing import Dict, Optional

from .config_manager import ConfigManager
from .models import Phase
from .quiz_controller import (
    QuizController,
    SessionConflictError,
    SessionNotFoundError,
    NotSessionOwnerError,
    TriviaSession,
)
from .quiz_engine import QuizStateMachine
from .views import build_session_embed, build_session_view

logger = logging.getLogger(__name__)


class TriviaBot(commands.Bot):
    """Discord bot hosting one trivia session per channel"""

    def __init__(self, config=None):
        # Minimal intents for slash commands and component interactions
        intents = discord.Intents.none()
        intents.guilds = True

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,  # Fallback prefix, mainly using slash commands
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}
        self.config_manager: Optional[ConfigManager] = None
        self.quiz_controller: Optional[QuizController] = None

        # Channel ID -> message showing that channel's session
        self._session_messages: Dict[int, discord.Message] = {}
        # Channel ID -> lock serializing every edit of that message
        self._render_locks: Dict[int, asyncio.Lock] = {}

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")

            self.config_manager = ConfigManager()
            if self.app_config:
                errors = self.config_manager.apply_config(self.app_config)
                for error in errors:
                    logger.warning(f"Configuration value rejected: {error}")

            self.quiz_controller = QuizController(self.config_manager)

            await self.setup_commands()

            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    async def setup_commands(self):
        """Register all slash commands"""
        @self.tree.command(name="help", description="Display available commands and their descriptions")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="trivia", description="Start a trivia session in this channel")
        async def trivia_command(interaction: discord.Interaction):
            await self.handle_start(interaction)

        @self.tree.command(name="restart", description="Replay the current trivia questions from the start")
        async def restart_command(interaction: discord.Interaction):
            await self.handle_restart(interaction)

        @self.tree.command(name="stop", description="Stop the trivia session in this channel")
        async def stop_command(interaction: discord.Interaction):
            await self.handle_stop(interaction)

        @self.tree.command(name="score", description="Show the score of the trivia session in this channel")
        async def score_command(interaction: discord.Interaction):
            await self.handle_score(interaction)

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")
        print(f"🤖 {self.user} is Ready and Online!")

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        if self.quiz_controller is not None:
            stopped = self.quiz_controller.stop_all_sessions()
            logger.info(f"Stopped {stopped} trivia sessions on shutdown")
        self._session_messages.clear()
        self._render_locks.clear()
        await super().close()

    def _render(self, machine: QuizStateMachine, new_message: bool = False) -> dict:
        view = build_session_view(self, machine)
        payload = {'embed': build_session_embed(machine)}
        # Editing with view=None clears the buttons; sending does not accept None
        if view is not None or not new_message:
            payload['view'] = view
        return payload

    def _render_lock(self, channel_id: int) -> asyncio.Lock:
        """
        Lock held around every state change and edit of a channel's message.

        A render is built when its lock is acquired, so the last edit to land
        always shows the latest state.
        """
        lock = self._render_locks.get(channel_id)
        if lock is None:
            lock = self._render_locks[channel_id] = asyncio.Lock()
        return lock

    def _make_listener(self, channel_id: int):
        async def on_transition(machine: QuizStateMachine):
            async with self._render_lock(channel_id):
                message = self._session_messages.get(channel_id)
                if message is None or machine.is_torn_down:
                    return
                try:
                    await message.edit(**self._render(machine))
                except discord.HTTPException as e:
                    logger.error(f"Failed to update trivia message for channel {channel_id}: {e}")
        return on_transition

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        embed = discord.Embed(
            title="🎲 Trivia Bot Help",
            description="Answer multiple-choice questions from the Open Trivia Database.",
            color=0x6699ff
        )
        embed.add_field(
            name="🎮 Commands",
            value=(
                "`/trivia` - Start a session in this channel\n"
                "`/restart` - Replay the same questions\n"
                "`/score` - Show your current score\n"
                "`/stop` - End the session"
            ),
            inline=False
        )
        embed.add_field(
            name="⚙️ Settings",
            value=self.config_manager.get_settings_summary(),
            inline=False
        )
        await interaction.response.send_message(embed=embed, ephemeral=True)

    async def handle_start(self, interaction: discord.Interaction):
        """Handle /trivia command: create a session, show it loading, then load it"""
        channel_id = interaction.channel_id

        try:
            session = self.quiz_controller.create_session(channel_id, interaction.user.id)
        except SessionConflictError:
            await self.send_error_response(
                interaction,
                "A trivia session is already running in this channel. Use `/stop` to end it first.",
                "⚠️ Session In Progress"
            )
            return

        session.machine.add_listener(self._make_listener(channel_id))

        try:
            await interaction.response.send_message(**self._render(session.machine, new_message=True))
            self._session_messages[channel_id] = await interaction.original_response()
        except discord.HTTPException as e:
            logger.error(f"Failed to send trivia message for channel {channel_id}: {e}")
            self.quiz_controller.stop_session(channel_id)
            return

        phase = await session.start()
        if session.is_torn_down:
            return

        logger.info(f"Trivia session in channel {channel_id} is {phase.value}")
        await self._refresh_session_message(channel_id, session)

    async def _refresh_session_message(self, channel_id: int, session: TriviaSession):
        async with self._render_lock(channel_id):
            message = self._session_messages.get(channel_id)
            if message is None:
                return
            try:
                await message.edit(**self._render(session.machine))
            except discord.HTTPException as e:
                logger.error(f"Failed to update trivia message for channel {channel_id}: {e}")

    async def handle_answer(self, interaction: discord.Interaction, answer: str, generation: Optional[int] = None):
        """Handle an answer button press"""
        channel_id = interaction.channel_id
        async with self._render_lock(channel_id):
            await self._apply_answer(interaction, answer, generation)

    async def _apply_answer(self, interaction: discord.Interaction, answer: str, generation: Optional[int]):
        channel_id = interaction.channel_id
        try:
            accepted = self.quiz_controller.select_answer(channel_id, interaction.user.id, answer, generation)
        except SessionNotFoundError:
            await self.send_error_response(interaction, "This trivia session has ended.", "ℹ️ Session Ended")
            return
        except NotSessionOwnerError:
            await self.send_error_response(
                interaction,
                "Only the player who started this session can answer. Start your own with `/trivia`.",
                "🚫 Not Your Session"
            )
            return

        if not accepted:
            await interaction.response.defer()
            return

        session = self.quiz_controller.get_session(channel_id)
        self._session_messages[channel_id] = interaction.message
        await interaction.response.edit_message(**self._render(session.machine))

    async def handle_restart(self, interaction: discord.Interaction):
        """Handle /restart and the Play Again button"""
        async with self._render_lock(interaction.channel_id):
            await self._apply_restart(interaction)

    async def _apply_restart(self, interaction: discord.Interaction):
        channel_id = interaction.channel_id
        try:
            restarted = self.quiz_controller.restart_session(channel_id, interaction.user.id)
        except SessionNotFoundError:
            await self.send_error_response(interaction, "There is no trivia session in this channel.", "ℹ️ No Session")
            return
        except NotSessionOwnerError:
            await self.send_error_response(
                interaction,
                "Only the player who started this session can restart it.",
                "🚫 Not Your Session"
            )
            return

        if not restarted:
            await self.send_error_response(
                interaction,
                "This session has no questions to replay. Use `/trivia` to start a new one.",
                "ℹ️ Nothing To Restart"
            )
            return

        session = self.quiz_controller.get_session(channel_id)
        if interaction.type is discord.InteractionType.component:
            self._session_messages[channel_id] = interaction.message
            await interaction.response.edit_message(**self._render(session.machine))
        else:
            await interaction.response.send_message(**self._render(session.machine, new_message=True))
            self._session_messages[channel_id] = await interaction.original_response()

    async def handle_stop(self, interaction: discord.Interaction):
        """Handle /stop command"""
        channel_id = interaction.channel_id
        progress = self.quiz_controller.get_session_progress(channel_id)

        if not self.quiz_controller.stop_session(channel_id):
            await self.send_error_response(interaction, "There is no trivia session in this channel.", "ℹ️ No Session")
            return

        self._session_messages.pop(channel_id, None)
        self._render_locks.pop(channel_id, None)
        description = "The trivia session has been stopped."
        if progress and progress['total_questions']:
            description += f"\nFinal score: **{progress['score']}/{progress['total_questions']}**"
        embed = discord.Embed(title="🛑 Trivia Stopped", description=description, color=0xffaa00)
        await interaction.response.send_message(embed=embed)

    async def handle_score(self, interaction: discord.Interaction):
        """Handle /score command"""
        progress = self.quiz_controller.get_session_progress(interaction.channel_id)
        if progress is None:
            await self.send_error_response(interaction, "There is no trivia session in this channel.", "ℹ️ No Session")
            return

        phase = Phase(progress['phase'])
        if phase is Phase.LOADING:
            status = "Loading questions..."
        elif phase is Phase.FAILED:
            status = progress['error_message']
        elif phase is Phase.FINISHED:
            status = "Finished"
        else:
            status = f"Question {progress['current_question']} of {progress['total_questions']}"

        embed = discord.Embed(title="📊 Trivia Score", color=0x6699ff)
        embed.add_field(name="Score", value=f"{progress['score']}/{progress['total_questions']}", inline=True)
        embed.add_field(name="Status", value=status, inline=True)
        await interaction.response.send_message(embed=embed, ephemeral=True)

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        try:
            embed = discord.Embed(
                title=title,
                description=message,
                color=0xff0000
            )
            embed.set_footer(text="If this error persists, try using /help for available commands")

            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send error response to user")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = TriviaBot(config)

    try:
        logger.info("Starting Trivia Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
