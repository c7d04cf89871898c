import math

import discord
from discord import app_commands
from discord.ext import commands

from config import EMBED_COLOR
from utils.cooldown import format_duration
from utils.seasons import calculate_current_season


def build_stats_embed(bot) -> discord.Embed:
    embed = discord.Embed(title="Bot stats", color=discord.Color(EMBED_COLOR))
    embed.add_field(name="Uptime", value=f"`{format_duration(bot.uptime_seconds())}`", inline=True)
    latency = bot.latency
    # latency is NaN until the first heartbeat
    embed.add_field(name="Latency", value="n/a" if math.isnan(latency) else f"{round(latency * 1000)}ms", inline=True)
    embed.add_field(name="Season", value=str(calculate_current_season()), inline=True)
    embed.add_field(name="Servers", value=str(len(bot.guilds)), inline=True)
    return embed


class Stats(commands.Cog):
    def __init__(self, bot):
        self.bot = bot

    @app_commands.command(name="stats", description="Show bot uptime and the current raid season")
    async def stats(self, interaction: discord.Interaction):
        await interaction.response.send_message(embed=build_stats_embed(self.bot))


async def setup(bot):
    await bot.add_cog(Stats(bot))
