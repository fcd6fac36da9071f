import discord
from discord import app_commands
from discord.ext import commands
import logging
import asyncio
import io
import os
from typing import Optional, Set
from pathlib import Path

from .data_manager import LeaderboardStore, QuestionBank
from .config_manager import ConfigManager
from .export import format_mmss
from .models import Difficulty, Question, RunSummary
from .quiz_controller import QuizController

logger = logging.getLogger(__name__)

SETTINGS_FILE = "settings.json"

# Identity fields the /register command can collect
REGISTER_FIELDS = ("name", "student_id", "department", "phone")


def setup_logging(log_directory: str = "logs", level: int = logging.INFO):
    """Set up console, file and error-file logging."""
    logs_dir = Path(log_directory)
    logs_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),  # Console output
            logging.FileHandler(logs_dir / "bot.log", encoding='utf-8'),  # File output
        ]
    )

    error_handler = logging.FileHandler(logs_dir / "errors.log", encoding='utf-8')
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logging.getLogger().addHandler(error_handler)

    # Reduce discord.py noise
    logging.getLogger('discord').setLevel(logging.WARNING)
    logging.getLogger('discord.http').setLevel(logging.WARNING)

    return logging.getLogger(__name__)


def build_question_embed(question: Question, status: dict) -> discord.Embed:
    """Render the current question with progress, timer and live score."""
    kind = "Multiple choice" if question.is_multiple_choice else "Short answer"
    embed = discord.Embed(
        title=f"🎯 Question {status['current_question']}/{status['total_questions']}",
        description=question.prompt,
        color=0x00ff00 if status['remaining_sec'] > 30 else 0xff6600
    )

    if question.code is not None:
        embed.add_field(
            name="Code",
            value=f"```{question.code.lang}\n{question.code.text}\n```",
            inline=False
        )

    if question.is_multiple_choice:
        selected = status.get('current_answer')
        lines = []
        for idx, choice in enumerate(question.choices):
            marker = "▶️" if selected == idx else "▫️"
            lines.append(f"{marker} **{idx + 1}.** {choice}")
        embed.add_field(name="Choices", value="\n".join(lines), inline=False)
        hint = "Answer with `/choose <number>`, then `/next`"
    else:
        current = status.get('current_answer')
        if current:
            embed.add_field(name="Your answer", value=f"```\n{current}\n```", inline=False)
        hint = "Answer with `/answer <text>` (case and spacing are ignored), then `/next`"

    embed.add_field(name="⏱️ Time Remaining", value=format_mmss(status['remaining_sec']), inline=True)
    embed.add_field(name="📚 Difficulty", value=status['difficulty'], inline=True)
    embed.add_field(name="✅ Correct so far", value=str(status['live_score']), inline=True)
    submit = " This is the last question: `/next` submits." if status.get('is_last_question') else ""
    embed.set_footer(text=f"{kind} · {hint}.{submit}")
    return embed


def build_result_embed(summary: RunSummary, qualified: bool) -> discord.Embed:
    """Render a finished run."""
    headline = (
        f"⏰ Time's up! You got {summary.correct_count} right."
        if summary.by_timeout
        else f"📨 Submitted! You got {summary.correct_count} right."
    )
    embed = discord.Embed(
        title="🏁 Quiz Finished",
        description=headline,
        color=0xff0000 if summary.by_timeout else 0x00ff00
    )
    embed.add_field(name="📚 Difficulty", value=summary.difficulty.value, inline=True)
    embed.add_field(name="📊 Score", value=f"{summary.correct_count} / {summary.total}", inline=True)
    embed.add_field(name="⏱️ Time", value=format_mmss(summary.elapsed_sec), inline=True)
    embed.add_field(
        name="🎖️ Clear",
        value=f"Cleared ({summary.difficulty.value})" if summary.cleared else "Not cleared",
        inline=True
    )
    if qualified:
        embed.add_field(
            name="🏆 Leaderboard",
            value="You made the leaderboard! Use `/register` to save your result.",
            inline=False
        )
    elif summary.by_timeout:
        embed.set_footer(text="Timed-out runs are not eligible for the leaderboard")
    return embed


class QuizBot(commands.Bot):
    """Discord front end for the single-session quiz kiosk."""

    def __init__(self, config=None):
        intents = discord.Intents.none()
        intents.guilds = True  # Required for slash commands

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}

        self.config_manager: Optional[ConfigManager] = None
        self.question_bank: Optional[QuestionBank] = None
        self.leaderboard_store: Optional[LeaderboardStore] = None
        self.quiz_controller: Optional[QuizController] = None

        # The kiosk runs one quiz at a time for one player
        self._owner_id: Optional[int] = None
        self._quiz_channel = None
        self._background_tasks: Set[asyncio.Task] = set()

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")
            self.build_components()
            await self.setup_commands()
            logger.info("Bot setup completed successfully")
        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    def build_components(self):
        """Create managers and the controller from configuration."""
        self.config_manager = ConfigManager()
        self.config_manager.apply_config(self.app_config)
        self.config_manager.load_settings_file(SETTINGS_FILE)

        unsupported = [f for f in self.config_manager.get_identity_fields() if f not in REGISTER_FIELDS]
        if unsupported:
            raise ValueError(
                f"identity_fields {unsupported} cannot be collected by /register; "
                f"use a subset of {list(REGISTER_FIELDS)}"
            )

        self.question_bank = QuestionBank(self.config_manager.get_question_file())
        self.leaderboard_store = LeaderboardStore(self.config_manager.get_leaderboard_file())
        self.quiz_controller = QuizController(
            self.question_bank, self.leaderboard_store, self.config_manager
        )
        self.quiz_controller.add_finish_listener(self.on_run_finished)

        result = self.quiz_controller.load_questions()
        if result['success']:
            logger.info(f"{result['message']}: {result['counts']}")
        else:
            logger.error(f"Question pool unavailable at startup: {result['error']}")

    async def setup_commands(self):
        """Register all slash commands"""
        difficulty_choices = [app_commands.Choice(name=d.value, value=d.value) for d in Difficulty]

        @self.tree.command(name="help", description="Display available commands and current settings")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="start", description="Start a timed quiz")
        @app_commands.choices(difficulty=difficulty_choices)
        async def start_command(interaction: discord.Interaction, difficulty: app_commands.Choice[str],
                                count: Optional[int] = None):
            await self.handle_start(interaction, difficulty.value, count)

        @self.tree.command(name="choose", description="Pick a choice for the current question")
        async def choose_command(interaction: discord.Interaction, option: int):
            await self.handle_answer(interaction, option - 1)

        @self.tree.command(name="answer", description="Type an answer for the current question")
        async def answer_command(interaction: discord.Interaction, text: str):
            await self.handle_answer(interaction, text)

        @self.tree.command(name="next", description="Go to the next question, or submit on the last one")
        async def next_command(interaction: discord.Interaction):
            await self.handle_next(interaction)

        @self.tree.command(name="quit", description="End the current quiz without saving")
        async def quit_command(interaction: discord.Interaction):
            await self.handle_quit(interaction)

        @self.tree.command(name="status", description="Show quiz progress")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        @self.tree.command(name="leaderboard", description="Show the leaderboard for a difficulty")
        @app_commands.choices(difficulty=difficulty_choices)
        async def leaderboard_command(interaction: discord.Interaction, difficulty: app_commands.Choice[str]):
            await self.handle_leaderboard(interaction, difficulty.value)

        @self.tree.command(name="register", description="Save a qualifying result to the leaderboard")
        async def register_command(interaction: discord.Interaction, name: str,
                                   student_id: Optional[str] = None, department: Optional[str] = None,
                                   phone: Optional[str] = None):
            # Which of these are required is decided by the configured identity fields
            supplied = {'name': name, 'student_id': student_id, 'department': department, 'phone': phone}
            await self.handle_register(interaction, {k: v for k, v in supplied.items() if v is not None})

        @self.tree.command(name="set_timer", description="Set the quiz time limit in minutes (1-999)")
        @app_commands.default_permissions(manage_guild=True)
        async def set_timer_command(interaction: discord.Interaction, minutes: int):
            await self.handle_setting(interaction, self.config_manager.set_time_limit_minutes(minutes))

        @self.tree.command(name="set_leaderboard_size", description="Set how many results each leaderboard keeps")
        @app_commands.default_permissions(manage_guild=True)
        async def set_leaderboard_size_command(interaction: discord.Interaction, size: int):
            await self.handle_setting(interaction, self.config_manager.set_leaderboard_size(size))

        @self.tree.command(name="export", description="Download leaderboard records as CSV and JSON")
        @app_commands.default_permissions(manage_guild=True)
        async def export_command(interaction: discord.Interaction):
            await self.handle_export(interaction)

        @self.tree.command(name="clear_leaderboard", description="Delete every saved leaderboard record")
        @app_commands.default_permissions(manage_guild=True)
        async def clear_leaderboard_command(interaction: discord.Interaction):
            await self.handle_clear_leaderboard(interaction)

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    # ------------------------------------------------------------------
    # Timer-driven notifications
    # ------------------------------------------------------------------

    def on_run_finished(self, summary: RunSummary, qualified: bool) -> None:
        """Controller listener; announces timeouts, which no command reply covers."""
        if not summary.by_timeout or self._quiz_channel is None:
            return
        task = asyncio.get_running_loop().create_task(
            self._announce_result(self._quiz_channel, summary, qualified)
        )
        # The loop only keeps weak references to tasks
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _announce_result(self, channel, summary: RunSummary, qualified: bool) -> None:
        try:
            await channel.send(embed=build_result_embed(summary, qualified))
        except discord.HTTPException as e:
            logger.error(f"Failed to announce timeout result: {e}")

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------

    def _is_owner(self, interaction: discord.Interaction) -> bool:
        return self._owner_id is None or interaction.user.id == self._owner_id

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        try:
            help_embed = discord.Embed(
                title="🎯 Quiz Kiosk Commands",
                description="Timed quiz with a Top-N leaderboard per difficulty",
                color=0x00ff00
            )
            help_embed.add_field(
                name="🎮 Playing",
                value=(
                    "`/start <difficulty> [count]` - Start a timed quiz\n"
                    "`/choose <number>` - Pick a choice\n"
                    "`/answer <text>` - Type a short answer\n"
                    "`/next` - Next question (submits on the last one)\n"
                    "`/quit` - End the quiz without saving\n"
                    "`/status` - Show progress"
                ),
                inline=False
            )
            help_embed.add_field(
                name="🏆 Leaderboard",
                value=(
                    "`/leaderboard <difficulty>` - Show the top results\n"
                    "`/register` - Save a qualifying result"
                ),
                inline=False
            )
            help_embed.add_field(
                name="⚙️ Current Settings",
                value=f"```\n{self.config_manager.get_settings_summary()}\n```",
                inline=False
            )
            counts = self.question_bank.count_by_difficulty()
            help_embed.add_field(
                name="📚 Questions",
                value=" | ".join(f"{d.value}: {n}" for d, n in counts.items()),
                inline=False
            )
            await interaction.response.send_message(embed=help_embed)
        except discord.HTTPException as e:
            logger.error(f"Error in help command: {e}")

    async def handle_start(self, interaction: discord.Interaction, difficulty: str, count: Optional[int]):
        """Handle /start command"""
        try:
            if not self.question_bank.is_loaded():
                # Retry the load; the file may have been fixed since startup
                reload_result = self.quiz_controller.load_questions()
                if not reload_result['success']:
                    await self.send_error_response(interaction, reload_result['user_message'], "❌ No Questions")
                    return

            result = self.quiz_controller.start_quiz(difficulty, count)
            if not result['success']:
                await self.send_error_response(interaction, result['user_message'], "❌ Quiz Start Failed")
                return

            self._owner_id = interaction.user.id
            self._quiz_channel = interaction.channel
            status = result['session_info']
            embed = build_question_embed(status['question'], status)
            await interaction.response.send_message(
                content=f"🎯 **{status['difficulty']}** quiz started: {status['total_questions']} questions, "
                        f"{format_mmss(status['time_budget_sec'])} on the clock.",
                embed=embed
            )
        except discord.HTTPException as e:
            logger.error(f"Error in start command: {e}")

    async def handle_answer(self, interaction: discord.Interaction, value):
        """Handle /choose and /answer commands"""
        try:
            if not self._is_owner(interaction):
                await self.send_warning_response(interaction, "Only the player who started this quiz can answer.")
                return

            result = self.quiz_controller.record_answer(value)
            if not result['success']:
                await self.send_error_response(interaction, result['user_message'], "❌ Answer Not Recorded")
                return

            status = self.quiz_controller.get_status()
            await interaction.response.send_message(
                embed=build_question_embed(status['question'], status),
                ephemeral=True
            )
        except discord.HTTPException as e:
            logger.error(f"Error in answer command: {e}")

    async def handle_next(self, interaction: discord.Interaction):
        """Handle /next command"""
        try:
            if not self._is_owner(interaction):
                await self.send_warning_response(interaction, "Only the player who started this quiz can continue.")
                return

            result = self.quiz_controller.next_question()
            if not result['success']:
                await self.send_error_response(interaction, result['user_message'], "❌ Cannot Continue")
                return

            feedback = "✅ Correct!" if result['was_correct'] else "❌ Incorrect"
            if result['finished']:
                await interaction.response.send_message(
                    content=feedback,
                    embed=build_result_embed(result['summary'], result['qualified'])
                )
                return

            status = result['session_info']
            await interaction.response.send_message(
                content=feedback,
                embed=build_question_embed(status['question'], status)
            )
        except discord.HTTPException as e:
            logger.error(f"Error in next command: {e}")

    async def handle_quit(self, interaction: discord.Interaction):
        """Handle /quit command"""
        try:
            if not self._is_owner(interaction):
                await self.send_warning_response(interaction, "Only the player who started this quiz can end it.")
                return

            result = self.quiz_controller.quit_quiz()
            self._owner_id = None
            self._quiz_channel = None
            if result['success']:
                await self.send_info_response(interaction, result['user_message'], "🛑 Quiz Ended")
            else:
                await self.send_error_response(interaction, result['user_message'])
        except discord.HTTPException as e:
            logger.error(f"Error in quit command: {e}")

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        try:
            status = self.quiz_controller.get_status()
            if status is None:
                await self.send_info_response(interaction, "No quiz is running. Start one with `/start`.", "📊 Status")
                return
            if status['state'] == "running":
                await interaction.response.send_message(
                    embed=build_question_embed(status['question'], status),
                    ephemeral=True
                )
            else:
                await interaction.response.send_message(
                    embed=build_result_embed(status['summary'], status['registration_open']),
                    ephemeral=True
                )
        except discord.HTTPException as e:
            logger.error(f"Error in status command: {e}")

    async def handle_leaderboard(self, interaction: discord.Interaction, difficulty: str):
        """Handle /leaderboard command"""
        try:
            records = self.quiz_controller.get_leaderboard(difficulty)
            embed = discord.Embed(title=f"🏆 {difficulty} Leaderboard", color=0xffd700)
            if not records:
                embed.description = "No results yet."
            else:
                lines = []
                for place, record in enumerate(records, start=1):
                    name = record.identity.get('name') or "Anonymous"
                    elapsed = format_mmss(record.elapsed_sec) if record.elapsed_sec is not None else "--:--"
                    lines.append(f"**{place}.** {name} · {record.score}/{record.total} · {elapsed}")
                embed.description = "\n".join(lines)
            await interaction.response.send_message(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Error in leaderboard command: {e}")

    async def handle_register(self, interaction: discord.Interaction, identity: dict):
        """Handle /register command"""
        try:
            if not self._is_owner(interaction):
                await self.send_warning_response(interaction, "Only the player who finished this quiz can register.")
                return

            result = self.quiz_controller.register_winner(identity)
            if not result['success']:
                await self.send_error_response(interaction, result['user_message'], "❌ Registration Failed")
            elif result['saved']:
                await self.send_info_response(interaction, result['user_message'], "🏆 Saved")
            else:
                await self.send_warning_response(interaction, result['user_message'], "⚠️ Not Saved")
        except discord.HTTPException as e:
            logger.error(f"Error in register command: {e}")

    async def handle_setting(self, interaction: discord.Interaction, result: dict):
        """Reply to an admin settings change and persist it."""
        try:
            if result['success']:
                self.config_manager.save_settings_file(SETTINGS_FILE)
                await self.send_info_response(interaction, result['user_message'], "⚙️ Settings Updated")
            else:
                await self.send_error_response(interaction, result['user_message'], "❌ Configuration Error")
        except discord.HTTPException as e:
            logger.error(f"Error in settings command: {e}")

    async def handle_export(self, interaction: discord.Interaction):
        """Handle /export command"""
        try:
            files = [
                discord.File(io.BytesIO(self.quiz_controller.export_csv().encode('utf-8')),
                             filename="quiz_winners.csv"),
                discord.File(io.BytesIO(self.quiz_controller.export_json().encode('utf-8')),
                             filename="quiz_winners.json"),
            ]
            await interaction.response.send_message(content="📥 Leaderboard export", files=files, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error in export command: {e}")

    async def handle_clear_leaderboard(self, interaction: discord.Interaction):
        """Handle /clear_leaderboard command"""
        try:
            result = self.quiz_controller.clear_leaderboard()
            if result['success']:
                await self.send_info_response(interaction, result['user_message'], "🧹 Cleared")
            else:
                await self.send_error_response(interaction, result['user_message'])
        except discord.HTTPException as e:
            logger.error(f"Error in clear_leaderboard command: {e}")

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        await self._send_embed(interaction, message, title, 0xff0000)

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send formatted info response to user"""
        await self._send_embed(interaction, message, title, 0x6699ff)

    async def send_warning_response(self, interaction: discord.Interaction, message: str, title: str = "⚠️ Warning"):
        """Send formatted warning response to user"""
        await self._send_embed(interaction, message, title, 0xffaa00)

    async def _send_embed(self, interaction: discord.Interaction, message: str, title: str, color: int):
        try:
            embed = discord.Embed(title=title, description=message, color=color)
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error(f"Failed to send '{title}' response to user")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting quiz kiosk bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
