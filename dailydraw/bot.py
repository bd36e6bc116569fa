from __future__ import annotations

import argparse
import asyncio
import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands, tasks

from .backend import BackendClient
from .config import Config, ConfigError, load_config
from .coordinator import DrawCoordinator
from .entries import EntryLoader
from .milestones import countdown_stage, format_remaining
from .models import Entry, Notification
from .notifications import NotificationBroadcaster
from .storage import StateStorage
from .views import StatusView

log = logging.getLogger(__name__)
PERMISSION_LOG = logging.getLogger("dailydraw.permissions")
ENV_PATH = Path(".env")

STAGE_COLORS = {
    "normal": discord.Color.blue(),
    "urgent": discord.Color.orange(),
    "final": discord.Color.red(),
}


def _load_env_file(path: Path = ENV_PATH) -> None:
    if not path.exists():
        return
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return
    for line in raw.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        key = key.strip()
        if not key:
            continue
        value = value.strip()
        if value and ((value[0] == value[-1]) and value.startswith(("'", '"'))):
            value = value[1:-1]
        os.environ.setdefault(key, value)


def configure_logging(level: str) -> None:
    console_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    root_logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_dir = Path("logs")
    log_dir.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_dir / "log.txt", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)


class DiscordChannelSink:
    """Mirrors notifications into a text channel without blocking the publisher."""

    def __init__(self, bot: discord.Client, channel_id: int) -> None:
        self.bot = bot
        self.channel_id = channel_id
        self._tasks: set[asyncio.Task] = set()

    def show(
        self,
        title: str,
        message: str,
        *,
        icon: str,
        tag: str,
        require_interaction: bool,
    ) -> None:
        content = f"**{title}**\n{message}"
        if require_interaction:
            content = f"@here {content}"
        task = asyncio.get_running_loop().create_task(self._send(content, tag))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, content: str, tag: str) -> None:
        channel = self.bot.get_channel(self.channel_id)
        if not isinstance(channel, discord.TextChannel):
            try:
                fetched = await self.bot.fetch_channel(self.channel_id)
            except (discord.NotFound, discord.Forbidden, discord.HTTPException) as exc:
                log.warning("Notification channel %s unavailable: %s", self.channel_id, exc)
                return
            if not isinstance(fetched, discord.TextChannel):
                log.warning("Notification channel %s is not a text channel.", self.channel_id)
                return
            channel = fetched
        try:
            await channel.send(content, allowed_mentions=discord.AllowedMentions(everyone=True))
        except discord.HTTPException as exc:
            log.warning("Failed to send %s notification to %s: %s", tag, self.channel_id, exc)


class DrawBot(commands.Bot):
    def __init__(self, config: Config, storage: StateStorage) -> None:
        intents = discord.Intents.default()

        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            application_id=config.application_id,
        )
        self.config = config
        self.storage = storage

        sink_channel_id = (
            config.notifications.channel_id or config.logging.logger_channel_id
        )
        self.broadcaster = NotificationBroadcaster(
            history_limit=config.notifications.history_limit,
            sink=DiscordChannelSink(self, sink_channel_id) if sink_channel_id else None,
            history_listener=storage.schedule_notifications_save,
        )
        self.backend = BackendClient(config.backend)
        self.loader = EntryLoader(
            self.backend,
            self.broadcaster,
            max_attempts=config.loader.max_attempts,
            backoff_base=config.loader.backoff_base_seconds,
        )
        self.coordinator = DrawCoordinator(
            self.broadcaster,
            self.backend,
            self.loader,
            storage,
            cycle_length=timedelta(seconds=config.draw.cycle_seconds),
            cooldown_seconds=config.draw.cooldown_seconds,
        )
        self._announced = False

    async def setup_hook(self) -> None:
        try:
            self.broadcaster.restore(await self.storage.load_notifications())
        except Exception as exc:
            log.exception(
                "Failed to load notification history, starting empty: %s", exc
            )
        await self.coordinator.initialize()
        self._draw_ticker.change_interval(seconds=self.config.draw.tick_seconds)
        self._draw_ticker.start()
        await self.tree.sync()
        dev_guild_id = self.config.permissions.development_guild_id
        if dev_guild_id:
            guild = discord.Object(dev_guild_id)
            await self.tree.sync(guild=guild)

    @tasks.loop(seconds=1)
    async def _draw_ticker(self) -> None:
        try:
            await self.coordinator.tick()
        except Exception:
            log.exception("Draw tick failed")

    async def on_ready(self) -> None:
        log.info("Logged in as %s (%s)", self.user, self.user.id)  # type: ignore[union-attr]
        if not self._announced:
            self._announced = True
            self.broadcaster.system(
                "🔔 Draw coordinator online",
                f"Next automated draw in {format_remaining(self.coordinator.remaining_seconds())}.",
            )

    async def close(self) -> None:
        self._draw_ticker.cancel()
        self.coordinator.close()
        await self.backend.close()
        await self.storage.flush()
        await super().close()

    def is_admin(self, member: discord.Member) -> bool:
        guild = getattr(member, "guild", None)
        if guild is not None and getattr(guild, "owner_id", None) == member.id:
            return True
        permissions = getattr(member, "guild_permissions", None)
        if permissions and (permissions.administrator or permissions.manage_guild):
            return True
        admin_roles = set(self.config.permissions.admin_roles)
        if not admin_roles:
            return False
        role_ids = {role.id for role in getattr(member, "roles", [])}
        return bool(admin_roles & role_ids)


async def admin_required(interaction: discord.Interaction, bot: DrawBot) -> Optional[str]:
    command_name = getattr(getattr(interaction, "command", None), "name", "unknown")
    user = interaction.user
    if interaction.guild is None or not isinstance(user, discord.Member):
        PERMISSION_LOG.debug(
            "Denied command %s for user %s: non-guild context.", command_name, user.id
        )
        return "This command can only be used inside a guild."
    if not bot.is_admin(user):
        PERMISSION_LOG.warning(
            "Denied command %s for user %s: missing draw admin rights.",
            command_name,
            user.id,
        )
        return "You do not have permission to manage the draw."
    PERMISSION_LOG.debug("Authorized command %s for user %s.", command_name, user.id)
    return None


def _describe_entry(entry: Entry) -> str:
    return f'"{entry.description}" by {entry.owner_ref} (`{entry.id}`)'


def _describe_notification(notification: Notification) -> str:
    marker = "" if notification.read else "🆕 "
    return (
        f"{marker}{notification.icon} **{notification.title}** "
        f"<t:{int(notification.created_at.timestamp())}:R> (`{notification.id}`)\n"
        f"{notification.message}"
    )


def build_status_embed(bot: DrawBot) -> discord.Embed:
    coordinator = bot.coordinator
    remaining = coordinator.remaining_seconds()
    stage = countdown_stage(remaining)
    embed = discord.Embed(
        title="🌍 24-Hour Auto Lottery",
        description=f"Next auto draw in **{format_remaining(remaining)}**",
        color=STAGE_COLORS[stage],
    )
    status = coordinator.status
    embed.add_field(name="Status", value=status.value if status else "starting", inline=True)
    embed.add_field(name="Entries", value=str(len(coordinator.entries)), inline=True)
    if coordinator.deadline:
        embed.add_field(
            name="Draws At",
            value=f"<t:{int(coordinator.deadline.timestamp())}:F>",
            inline=False,
        )
    if coordinator.current_winner:
        embed.add_field(
            name="Current Winner",
            value=_describe_entry(coordinator.current_winner),
            inline=False,
        )
    if bot.loader.failed:
        embed.add_field(name="⚠️ Entries unavailable", value=bot.loader.error, inline=False)
    embed.set_footer(text=f"{bot.broadcaster.unread_count()} unread notification(s)")
    return embed


def build_bot(config_path: Path) -> DrawBot:
    _load_env_file()
    config = load_config(config_path)
    configure_logging(config.logging.level)
    storage = StateStorage(config.storage.data_dir)
    return DrawBot(config, storage)


def register_commands(bot: DrawBot) -> None:
    @bot.tree.command(name="draw-status", description="Show the countdown to the next draw.")
    async def draw_status(interaction: discord.Interaction) -> None:
        await interaction.response.send_message(
            embed=build_status_embed(bot), view=StatusView(bot), ephemeral=True
        )

    @bot.tree.command(name="draw-entries", description="List the entries in the current draw.")
    async def draw_entries(interaction: discord.Interaction) -> None:
        entries = bot.coordinator.entries
        if not entries:
            message = (
                bot.loader.error
                if bot.loader.failed
                else "No photos have been entered in this draw yet."
            )
            await interaction.response.send_message(message, ephemeral=True)
            return
        lines = [
            f"{'🏆 ' if entry.is_winner else '- '}{_describe_entry(entry)}"
            for entry in entries[:25]
        ]
        if len(entries) > 25:
            lines.append(f"...and {len(entries) - 25} more.")
        await interaction.response.send_message("\n".join(lines), ephemeral=True)

    @bot.tree.command(name="draw-notifications", description="Show recent draw notifications.")
    @app_commands.describe(unread_only="Only list notifications you have not read yet.")
    async def draw_notifications(
        interaction: discord.Interaction, unread_only: bool = False
    ) -> None:
        items = bot.broadcaster.unread() if unread_only else bot.broadcaster.history()
        if not items:
            await interaction.response.send_message("No notifications.", ephemeral=True)
            return
        body = "\n\n".join(_describe_notification(item) for item in items[:10])
        header = f"{bot.broadcaster.unread_count()} unread of {len(bot.broadcaster.history())}."
        await interaction.response.send_message(f"{header}\n\n{body}"[:2000], ephemeral=True)

    @bot.tree.command(name="draw-read", description="Mark notifications as read.")
    @app_commands.describe(notification_id="Notification to mark; leave empty to mark all.")
    async def draw_read(
        interaction: discord.Interaction, notification_id: Optional[str] = None
    ) -> None:
        if notification_id is None:
            changed = bot.broadcaster.mark_all_read()
            await interaction.response.send_message(
                f"Marked {changed} notification(s) as read.", ephemeral=True
            )
            return
        try:
            parsed_id = int(notification_id.strip())
        except ValueError:
            await interaction.response.send_message(
                "Notification IDs are numbers.", ephemeral=True
            )
            return
        if bot.broadcaster.mark_read(parsed_id):
            await interaction.response.send_message("Marked as read.", ephemeral=True)
        else:
            await interaction.response.send_message(
                "No unread notification with that ID.", ephemeral=True
            )

    @bot.tree.command(name="draw-clear", description="Clear the notification history.")
    async def draw_clear(interaction: discord.Interaction) -> None:
        error = await admin_required(interaction, bot)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        bot.broadcaster.clear()
        await interaction.response.send_message("Notification history cleared.", ephemeral=True)

    @bot.tree.command(name="draw-retry", description="Reload the draw entries from the backend.")
    async def draw_retry(interaction: discord.Interaction) -> None:
        error = await admin_required(interaction, bot)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True)
        entries = await bot.coordinator.retry_entries()
        if bot.loader.failed:
            await interaction.followup.send(f"Reload failed: {bot.loader.error}", ephemeral=True)
            return
        await interaction.followup.send(f"Loaded {len(entries)} entries.", ephemeral=True)

    @bot.tree.command(name="draw-test", description="Send a test notification.")
    async def draw_test(interaction: discord.Interaction) -> None:
        error = await admin_required(interaction, bot)
        if error:
            await interaction.response.send_message(error, ephemeral=True)
            return
        notification = bot.broadcaster.test()
        await interaction.response.send_message(
            f"Test notification `{notification.id}` sent.", ephemeral=True
        )


async def main() -> None:
    parser = argparse.ArgumentParser(description="Daily photo draw coordinator")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("config") / "config.yaml",
        help="Path to the bot configuration file.",
    )
    args = parser.parse_args()

    try:
        bot = build_bot(args.config)
    except ConfigError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc

    register_commands(bot)

    async with bot:
        await bot.start(bot.config.token)


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
