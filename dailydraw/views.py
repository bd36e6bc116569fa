from __future__ import annotations

import discord


class StatusView(discord.ui.View):
    def __init__(self, bot) -> None:
        super().__init__(timeout=300)
        self.bot = bot

        read_button = discord.ui.Button(
            label="Mark all read",
            style=discord.ButtonStyle.secondary,
            custom_id="draw:read-all",
        )
        read_button.callback = self.read_all_callback  # type: ignore[assignment]
        self.add_item(read_button)

        retry_button = discord.ui.Button(
            label="Retry loading entries",
            style=discord.ButtonStyle.primary,
            custom_id="draw:retry-entries",
            disabled=not bot.loader.failed,
        )
        retry_button.callback = self.retry_callback  # type: ignore[assignment]
        self.add_item(retry_button)

    async def read_all_callback(self, interaction: discord.Interaction) -> None:
        changed = self.bot.broadcaster.mark_all_read()
        await interaction.response.send_message(
            f"Marked {changed} notification(s) as read.", ephemeral=True
        )

    async def retry_callback(self, interaction: discord.Interaction) -> None:
        if not isinstance(interaction.user, discord.Member) or not self.bot.is_admin(
            interaction.user
        ):
            await interaction.response.send_message(
                "Only administrators can reload the entries.", ephemeral=True
            )
            return
        await interaction.response.defer(ephemeral=True)
        entries = await self.bot.coordinator.retry_entries()
        if self.bot.loader.failed:
            await interaction.followup.send(
                f"Reload failed: {self.bot.loader.error}", ephemeral=True
            )
            return
        await interaction.followup.send(
            f"Reloaded {len(entries)} entr{'y' if len(entries) == 1 else 'ies'}.",
            ephemeral=True,
        )
