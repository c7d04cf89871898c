import logging
import time
from datetime import datetime
from typing import Optional, List

import discord
import pytz
from discord import app_commands
from discord.ext import commands

from config import DEFAULT_TIMEZONE, EMBED_COLOR
from utils.cooldown import format_duration, format_cooldown_label, within_next_hour
from utils.errors import InvalidArgument
from utils.seasons import calculate_current_season, season_start
from utils.tokens import (
    TokenConfig,
    TokenState,
    bomb_cooldown_remaining,
    evaluate_token,
    get_unix_timestamp,
    pending_from_anchored,
    replay_token_usage,
    seconds_until_next_token,
    spend_token,
)

logger = logging.getLogger("discord")

token_group = app_commands.Group(name="tokens", description="Raid token tracking commands")

COMMON_TIMEZONES = [
    "UTC", "US/Pacific", "US/Mountain", "US/Central", "US/Eastern",
    "Canada/Atlantic", "Europe/London", "Europe/Paris", "Europe/Berlin",
    "Europe/Moscow", "Asia/Dubai", "Asia/Kolkata", "Asia/Bangkok",
    "Asia/Singapore", "Asia/Tokyo", "Australia/Sydney", "Australia/Melbourne"
]

EMBED_FIELD_LIMIT = 1024
EMBED_TOTAL_LIMIT = 6000
EMBED_MAX_FIELDS = 25


def build_status_embed(name: str, state: TokenState, now: int, config: TokenConfig,
                       tz_name: str = "UTC", last_bomb_at: Optional[int] = None) -> discord.Embed:
    tz = pytz.timezone(tz_name)
    embed = discord.Embed(title=f"Raid tokens for {name}", color=discord.Color(EMBED_COLOR))
    embed.add_field(name="Tokens", value=f"**{state.count}** / {config.max_tokens}", inline=True)

    remaining = seconds_until_next_token(state, now, config)
    if state.count >= config.max_tokens:
        embed.add_field(name="Next token", value="Pool is full", inline=True)
    else:
        refill_at = datetime.fromtimestamp(now + remaining, tz)
        embed.add_field(
            name="Next token",
            value=f"in `{format_duration(remaining)}`\n{refill_at.strftime('%Y-%m-%d %H:%M')} ({tz_name})",
            inline=True
        )

    bomb_left = bomb_cooldown_remaining(last_bomb_at, now, config)
    embed.add_field(
        name="Bomb",
        value="Available" if bomb_left == 0 else f"in `{format_duration(bomb_left, hide_days=True)}`",
        inline=True
    )
    return embed


def build_guild_lines(entries, now: int, config: TokenConfig, names: dict):
    """Returns (table lines, members with a bomb ready, members whose bomb returns within the hour)."""
    lines: List[str] = []
    ready: List[str] = []
    soon: List[str] = []
    for user_id, state, last_bomb_at in entries:
        name = names.get(user_id) or f"<@{user_id}>"
        remaining = seconds_until_next_token(state, now, config)
        token_part = f"{state.count}/{config.max_tokens}"
        if remaining:
            token_part += f" (+1 in {format_duration(remaining, hide_days=True)})"

        bomb_left = bomb_cooldown_remaining(last_bomb_at, now, config)
        if bomb_left == 0:
            bomb_part = "bomb ready"
            ready.append(name)
        else:
            label = format_cooldown_label(bomb_left, round_up=True)
            bomb_part = f"bomb in {label}"
            if within_next_hour(label):
                soon.append(name)

        lines.append(f"- {name}: {token_part} | {bomb_part}")
    return lines, ready, soon


def _chunk_lines(lines: List[str], limit: int = EMBED_FIELD_LIMIT) -> List[str]:
    chunks: List[str] = []
    current = ""
    for line in lines:
        if len(line) > limit:
            line = line[:limit - 1] + "…"
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


def _code_block(names: List[str], limit: int = EMBED_FIELD_LIMIT) -> str:
    if not names:
        return "```None```"

    # room for the fences and a "+N more" line
    budget = limit - len("``````") - len(f"\n+{len(names)} more")
    shown: List[str] = []
    used = 0
    for name in names:
        cost = len(name) + (1 if shown else 0)
        if used + cost > budget:
            break
        shown.append(name)
        used += cost

    body = "\n".join(shown)
    if len(shown) < len(names):
        body += f"\n+{len(names) - len(shown)} more"
    return f"```{body}```"


def build_guild_embeds(lines: List[str], ready: List[str], soon: List[str], season: int,
                       show_soon: bool = True) -> List[discord.Embed]:
    """Spread the guild table over as many embeds as Discord's size limits require."""
    def new_embed(title: str) -> discord.Embed:
        embed = discord.Embed(title=title, description=f"Season {season}", color=discord.Color(EMBED_COLOR))
        embeds.append(embed)
        return embed

    embeds: List[discord.Embed] = []
    new_embed("Available tokens and bombs")

    def add(name: str, value: str):
        embed = embeds[-1]
        if len(embed.fields) >= EMBED_MAX_FIELDS or len(embed) + len(name) + len(value) > EMBED_TOTAL_LIMIT:
            embed = new_embed("Available tokens and bombs (continued)")
        embed.add_field(name=name, value=value, inline=False)

    for chunk in _chunk_lines(lines):
        add("\u200b", chunk)
    add("Players with available bombs", _code_block(ready))
    if show_soon:
        add("Players with bombs available in less than an hour", _code_block(soon))
    return embeds


class Tokens(commands.Cog):
    def __init__(self, bot):
        self.bot = bot
        self.store = bot.token_store
        self.config: TokenConfig = bot.token_config

    async def cog_unload(self):
        try:
            self.bot.tree.remove_command(token_group.name)
        except Exception:
            logger.exception("Failed to remove /tokens group")

    async def current_state(self, user_id: int, now: int, guild_id: Optional[int] = None) -> Optional[TokenState]:
        async with self.store.lock_for(user_id):
            state = await self.store.load(user_id)
            if state is None:
                return None
            updated = evaluate_token(state, now, self.config)
            if updated is not state:
                await self.store.save(user_id, updated, guild_id)
            return updated

    async def set_state(self, user_id: int, count: int, next_in_minutes: Optional[int], now: int,
                        guild_id: Optional[int] = None) -> TokenState:
        """Store a pool reported by the member.

        ``next_in_minutes`` is when the pending token lands; it is ignored for a
        full pool and must fall within one refill period otherwise.
        """
        if not 0 <= count <= self.config.max_tokens:
            raise InvalidArgument(f"count must be between 0 and {self.config.max_tokens}")
        if count >= self.config.max_tokens:
            state = TokenState(count, now)
        else:
            period = self.config.refill_period_seconds
            if next_in_minutes is None:
                raise InvalidArgument("next_in_minutes is required while the pool is not full")
            if not 0 < next_in_minutes * 60 <= period:
                raise InvalidArgument(
                    f"next_in_minutes must be between 1 and {max(1, period // 60)}"
                )
            state = TokenState(count, now + next_in_minutes * 60)
        async with self.store.lock_for(user_id):
            await self.store.save(user_id, state, guild_id)
        return state

    async def use_token(self, user_id: int, now: int, guild_id: Optional[int] = None) -> Optional[TokenState]:
        async with self.store.lock_for(user_id):
            state = await self.store.load(user_id)
            if state is None:
                return None
            spent = spend_token(state, now, self.config)
            await self.store.save(user_id, spent, guild_id)
            await self.store.record_usage(user_id, now)
            return spent

    async def rebuild_state(self, user_id: int, now: int, guild_id: Optional[int] = None) -> TokenState:
        since = get_unix_timestamp(season_start(calculate_current_season(datetime.fromtimestamp(now, pytz.UTC))))
        async with self.store.lock_for(user_id):
            used_at = await self.store.usage_since(user_id, since)
            if used_at:
                anchored_state = replay_token_usage(used_at, now, self.config, initial_count=self.config.max_tokens - 1)
                state = pending_from_anchored(anchored_state, now, self.config)
            else:
                state = TokenState(self.config.max_tokens, now)
            await self.store.save(user_id, state, guild_id)
            return state


async def _get_tokens_cog(interaction: discord.Interaction) -> Optional[Tokens]:
    return interaction.client.get_cog('Tokens')


async def _timezone_autocomplete(interaction: discord.Interaction, current: str) -> list[app_commands.Choice[str]]:
    return [
        app_commands.Choice(name=tz, value=tz)
        for tz in COMMON_TIMEZONES
        if current.lower() in tz.lower()
    ][:25]


def _error_embed(title: str, description: str) -> discord.Embed:
    return discord.Embed(title=title, description=description, color=discord.Color.red())


@token_group.command(name="set", description="Register how many raid tokens you have right now")
@app_commands.describe(count="Tokens you currently hold",
                       next_in_minutes="Minutes until your next token regenerates (required unless your pool is full)")
async def tokens_set(interaction: discord.Interaction, count: app_commands.Range[int, 0, 100],
                     next_in_minutes: Optional[app_commands.Range[int, 1, 10080]] = None):
    cog = await _get_tokens_cog(interaction)
    if not cog:
        return await interaction.response.send_message("Token tracking unavailable.", ephemeral=True)

    now = int(time.time())
    try:
        state = await cog.set_state(interaction.user.id, count, next_in_minutes, now, interaction.guild_id)
    except InvalidArgument as e:
        return await interaction.response.send_message(embed=_error_embed("Error: Invalid Token State", str(e)), ephemeral=True)
    except Exception:
        logger.exception(f"{interaction.user.id} failed to use /tokens set")
        return await interaction.response.send_message("There was an error while saving your tokens.", ephemeral=True)

    embed = build_status_embed(interaction.user.display_name, state, now, cog.config, DEFAULT_TIMEZONE)
    embed.set_footer(text="Tokens saved! Check them later with /tokens status.")
    await interaction.response.send_message(embed=embed, ephemeral=True)


@token_group.command(name="status", description="Show current raid tokens")
@app_commands.describe(member="Whose tokens to show", timezone="Timezone for the refill time")
@app_commands.autocomplete(timezone=_timezone_autocomplete)
async def tokens_status(interaction: discord.Interaction, member: Optional[discord.Member] = None,
                        timezone: Optional[str] = None):
    cog = await _get_tokens_cog(interaction)
    if not cog:
        return await interaction.response.send_message("Token tracking unavailable.", ephemeral=True)

    target = member or interaction.user
    tz_name = timezone or DEFAULT_TIMEZONE
    if tz_name not in pytz.all_timezones_set:
        return await interaction.response.send_message(
            embed=_error_embed("Error: Unknown Timezone", f"`{tz_name}` is not a known timezone."), ephemeral=True)

    now = int(time.time())
    try:
        state = await cog.current_state(target.id, now)
        if state is None:
            return await interaction.response.send_message(
                f"No tokens registered for {target.display_name}. Use `/tokens set` first.", ephemeral=True)
        last_bomb_at = await cog.store.last_bomb(target.id)
    except Exception:
        logger.exception(f"{interaction.user.id} failed to use /tokens status")
        return await interaction.response.send_message("There was an error while fetching tokens.", ephemeral=True)

    embed = build_status_embed(target.display_name, state, now, cog.config, tz_name, last_bomb_at)
    await interaction.response.send_message(embed=embed, ephemeral=True)


@token_group.command(name="use", description="Spend one raid token")
async def tokens_use(interaction: discord.Interaction):
    cog = await _get_tokens_cog(interaction)
    if not cog:
        return await interaction.response.send_message("Token tracking unavailable.", ephemeral=True)

    now = int(time.time())
    remaining = None
    try:
        try:
            state = await cog.use_token(interaction.user.id, now, interaction.guild_id)
        except InvalidArgument:
            state = await cog.current_state(interaction.user.id, now)
            remaining = seconds_until_next_token(state, now, cog.config)
    except Exception:
        logger.exception(f"{interaction.user.id} failed to use /tokens use")
        return await interaction.response.send_message("There was an error while spending a token.", ephemeral=True)

    if remaining is not None:
        return await interaction.response.send_message(
            embed=_error_embed("No Tokens Left", f"Your next token arrives in `{format_duration(remaining)}`."),
            ephemeral=True)

    if state is None:
        return await interaction.response.send_message("No tokens registered. Use `/tokens set` first.", ephemeral=True)

    embed = build_status_embed(interaction.user.display_name, state, now, cog.config, DEFAULT_TIMEZONE)
    embed.set_footer(text="Token spent.")
    await interaction.response.send_message(embed=embed, ephemeral=True)


@token_group.command(name="bomb", description="Record that you just used your bomb")
async def tokens_bomb(interaction: discord.Interaction):
    cog = await _get_tokens_cog(interaction)
    if not cog:
        return await interaction.response.send_message("Token tracking unavailable.", ephemeral=True)

    now = int(time.time())
    try:
        remaining = bomb_cooldown_remaining(await cog.store.last_bomb(interaction.user.id), now, cog.config)
        if remaining:
            return await interaction.response.send_message(
                embed=_error_embed("Bomb On Cooldown", f"Your bomb is back in `{format_duration(remaining, hide_days=True)}`."),
                ephemeral=True)
        recorded = await cog.store.record_bomb(interaction.user.id, now)
    except Exception:
        logger.exception(f"{interaction.user.id} failed to use /tokens bomb")
        return await interaction.response.send_message("There was an error while recording your bomb.", ephemeral=True)

    if not recorded:
        return await interaction.response.send_message("No tokens registered. Use `/tokens set` first.", ephemeral=True)
    await interaction.response.send_message(
        f"Bomb recorded. Next bomb in `{format_duration(cog.config.bomb_cooldown_seconds, hide_days=True)}`.",
        ephemeral=True)


@token_group.command(name="guild", description="Show raid tokens and bombs for every registered member")
@app_commands.describe(soon="Also list members whose bomb is back within the hour")
@app_commands.guild_only()
async def tokens_guild(interaction: discord.Interaction, soon: bool = True):
    cog = await _get_tokens_cog(interaction)
    if not cog:
        return await interaction.response.send_message("Token tracking unavailable.", ephemeral=True)

    await interaction.response.defer()
    now = int(time.time())
    try:
        entries = []
        for user_id, _, last_bomb_at in await cog.store.guild_states(interaction.guild_id):
            state = await cog.current_state(user_id, now)
            if state is not None:
                entries.append((user_id, state, last_bomb_at))

        if not entries:
            return await interaction.followup.send("Nobody in this server has registered tokens yet.")

        names = {}
        for user_id, _, _ in entries:
            member = interaction.guild.get_member(user_id)
            if member:
                names[user_id] = member.display_name
        lines, ready, soon_names = build_guild_lines(entries, now, cog.config, names)

        # one embed per message keeps every message under the combined size limit
        for embed in build_guild_embeds(lines, ready, soon_names, calculate_current_season(), show_soon=soon):
            await interaction.followup.send(embed=embed)
    except Exception:
        logger.exception(f"{interaction.user.id} failed to use /tokens guild")
        await interaction.followup.send("There was an error while fetching guild tokens.")


@token_group.command(name="rebuild", description="Recalculate your tokens from the tokens you used this season")
async def tokens_rebuild(interaction: discord.Interaction):
    cog = await _get_tokens_cog(interaction)
    if not cog:
        return await interaction.response.send_message("Token tracking unavailable.", ephemeral=True)

    now = int(time.time())
    try:
        state = await cog.rebuild_state(interaction.user.id, now, interaction.guild_id)
    except Exception:
        logger.exception(f"{interaction.user.id} failed to use /tokens rebuild")
        return await interaction.response.send_message("There was an error while rebuilding your tokens.", ephemeral=True)

    embed = build_status_embed(interaction.user.display_name, state, now, cog.config, DEFAULT_TIMEZONE)
    embed.set_footer(text="Rebuilt from this season's token usage.")
    await interaction.response.send_message(embed=embed, ephemeral=True)


@token_group.command(name="clear", description="Forget your registered tokens")
async def tokens_clear(interaction: discord.Interaction):
    cog = await _get_tokens_cog(interaction)
    if not cog:
        return await interaction.response.send_message("Token tracking unavailable.", ephemeral=True)

    try:
        async with cog.store.lock_for(interaction.user.id):
            await cog.store.delete(interaction.user.id)
    except Exception:
        logger.exception(f"{interaction.user.id} failed to use /tokens clear")
        return await interaction.response.send_message("There was an error while clearing your tokens.", ephemeral=True)

    embed = discord.Embed(
        title="Tokens Cleared",
        description="Your token data has been deleted.",
        color=discord.Color.green()
    )
    await interaction.response.send_message(embed=embed, ephemeral=True)


async def setup(bot):
    bot.tree.add_command(token_group, override=True)
    await bot.add_cog(Tokens(bot))
