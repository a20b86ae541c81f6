from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Sequence, Set

from config import (
    ABOUT_FOOTER,
    ABOUT_MESSAGE,
    ABOUT_TITLE,
    BOT_VERSION,
    HELP_ADMIN_COMMANDS,
    HELP_FOOTER,
    HELP_OTHER_COMMANDS,
    HELP_TITLE,
    HELP_VOUCH_COMMANDS,
    HISTORY_PAGE_SIZE,
    LEADERBOARD_PAGE_SIZE,
    SEARCH_PAGE_SIZE,
    SUMMARY_COMMENT_PREVIEW,
    THANKS_FOOTER,
    VOUCH_GUIDE_MESSAGE,
    VOUCH_GUIDE_TITLE,
)
from vouchbot.engine.router import CommandContext, CommandHandler, mention_id, numeric_id
from vouchbot.errors import InvalidUserError, UsageError
from vouchbot.formatting import format_relative, format_timestamp, truncate
from vouchbot.ids import new_reference_id
from vouchbot.models import InboundMessage, Notice, ResolvedUser, UnknownUser, UserRef
from vouchbot.services.ledger import parse_count
from vouchbot.services.pagination import page_slice, parse_page_arg

logger = logging.getLogger(__name__)

VOUCHGIVE_USAGE = "Usage: !vouchgive <@user|userID> <count> <message>"
VOUCHES_USAGE = "Usage: !vouches [@user|userID]"
HISTORY_USAGE = "Usage: !vouchhistory <@user|userID> [page]"
REMOVE_USAGE = "Usage: !vouchremove <@user|userID>"
RESTORE_USAGE = "Usage: !restorevouches <@user|userID>"
SEARCH_USAGE = "Usage: !vouchsearch [@user] keyword [page]"
TRANSFER_USAGE = "Usage: !vouchtransfer <@sourceUser> <@targetUser>"


class VouchCommands:
    """
    Handlers for every chat command. Each takes a CommandContext from the
    router, raises UserInputError subclasses for bad input and lets
    PersistenceError propagate; the router turns both into replies.
    """

    def __init__(self, services):
        self.services = services
        self._background: Set[asyncio.Task] = set()

    @property
    def gateway(self):
        return self.services.gateway

    @property
    def ledger(self):
        return self.services.ledger

    @property
    def directory(self):
        return self.services.directory

    @property
    def settings(self):
        return self.services.settings

    def table(self) -> Dict[str, CommandHandler]:
        return {
            "vouch": self.vouch,
            "vouchgive": self.vouchgive,
            "vouches": self.vouches,
            "vouchhistory": self.vouchhistory,
            "vouchremove": self.vouchremove,
            "restorevouches": self.restorevouches,
            "vouchstats": self.vouchstats,
            "vouchleaderboard": self.vouchleaderboard,
            "vouchsearch": self.vouchsearch,
            "vouchtransfer": self.vouchtransfer,
            "help": self.help,
            "koala": self.koala,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def resolve_target(self, message: InboundMessage, token: Optional[str], usage: str) -> UserRef:
        """
        Turn a command argument into a user. Mention tokens win over numeric
        ids; ids the directory cannot find are rejected.
        """
        if token is None:
            raise UsageError(usage)

        uid = mention_id(token)
        if uid is not None:
            for user in message.mentions:
                if user.id == uid:
                    return ResolvedUser(user)
            return await self.directory.lookup(uid)

        uid = numeric_id(token)
        if uid is not None:
            ref = await self.directory.lookup(uid)
            if isinstance(ref, UnknownUser):
                raise InvalidUserError("Invalid user ID.")
            return ref

        if token.startswith("@"):
            raise InvalidUserError(
                f"I don't know {token} yet. Mention them by name or use their numeric user ID."
            )
        raise UsageError(usage)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for pending mirror tasks."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _notify(self, chat_id: Optional[int], notice: Notice) -> None:
        if chat_id is None:
            return
        await self.gateway.send(chat_id, notice)

    # ------------------------------------------------------------------
    # Vouching
    # ------------------------------------------------------------------

    async def vouch(self, ctx: CommandContext) -> None:
        message = ctx.message
        guide = VOUCH_GUIDE_MESSAGE.format(reference=new_reference_id())
        if not ctx.args:
            raise UsageError(guide, title=VOUCH_GUIDE_TITLE)

        target = await self.resolve_target(message, ctx.args[0], guide)
        comment = " ".join(ctx.args[1:])
        proof = message.proof

        record = self.ledger.grant(
            author_id=ctx.author_id,
            subject_id=target.id,
            comment=comment,
            has_proof=proof is not None,
            privileged=ctx.privileged,
        )

        author_tag = message.author.tag
        notice = (
            Notice(
                title="Vouch Logged",
                description=f"Vouch for {target.label} by {author_tag}",
                footer=THANKS_FOOTER,
            )
            .add_field("Vouches", "+1 Vouch", inline=True)
            .add_field("Vouch ID", record.id, inline=True)
            .add_field("Comment", record.comment)
        )
        await self.gateway.reply(message, notice)

        log_notice = Notice(
            title="Vouch Logged",
            description=(
                f"Vouch for {target.label} by {author_tag}\n"
                f"Vouches: +1\n"
                f"Comment: {record.comment}\n"
                f"Vouch ID: {record.id}"
            ),
        )
        self._spawn(self.gateway.send_photo(self.settings.log_channel_id, proof.file_id, log_notice))
        await self.gateway.react(message, success=True)

    async def vouchgive(self, ctx: CommandContext) -> None:
        message = ctx.message
        if len(ctx.args) < 3:
            raise UsageError(VOUCHGIVE_USAGE)

        target = await self.resolve_target(message, ctx.args[0], VOUCHGIVE_USAGE)
        count = parse_count(ctx.args[1])
        result = self.ledger.grant_bulk(ctx.author_id, target.id, count, " ".join(ctx.args[2:]))

        notice = (
            Notice(
                title="Vouches Added",
                description=f"Added {result.inserted} vouches at {format_timestamp(self.ledger.now())}",
                footer=THANKS_FOOTER,
            )
            .add_field("User", target.label, inline=True)
            .add_field("Vouches", f"+{result.inserted}", inline=True)
            .add_field("Total Vouches", str(result.total), inline=True)
            .add_field("Comment", result.comment)
        )
        if result.inserted < result.requested:
            notice = notice.append_line(f"{result.requested - result.inserted} of {result.requested} could not be saved.")
        await self.gateway.reply(message, notice)
        await self._notify(
            self.settings.notification_channel_id,
            Notice(
                title="Vouches Added",
                description=f"Added {result.inserted} vouches for {target.label} by {message.author.tag}",
            ),
        )

    async def vouches(self, ctx: CommandContext) -> None:
        message = ctx.message
        token = ctx.args[0] if ctx.args else None
        if token is not None and (mention_id(token) is not None or numeric_id(token) is not None or token.startswith("@")):
            target = await self.resolve_target(message, token, VOUCHES_USAGE)
        else:
            target = ResolvedUser(message.author)

        summary = self.ledger.summary(target.id)
        if summary.count == 0 or summary.latest is None:
            await self.gateway.reply(
                message,
                Notice(title="No Vouches", description=f"{target.label} has no vouches.", tone="error"),
            )
            return

        latest = summary.latest
        notice = (
            Notice(
                title="Vouch Summary",
                description=f"Vouch details for {target.label}",
                footer=f"For full history, try !vouchhistory {target.id}",
            )
            .add_field("Vouches", str(summary.count), inline=True)
            .add_field("Last Vouch", format_relative(latest.created_at), inline=True)
            .add_field("Last Comment", truncate(latest.comment, SUMMARY_COMMENT_PREVIEW), inline=True)
        )
        await self.gateway.reply(message, notice)

    async def vouchhistory(self, ctx: CommandContext) -> None:
        message = ctx.message
        target = await self.resolve_target(message, ctx.args[0] if ctx.args else None, HISTORY_USAGE)
        page = parse_page_arg(ctx.args[1] if len(ctx.args) > 1 else None)

        records = self.ledger.history(target.id)
        if not records:
            await self.gateway.reply(
                message,
                Notice(title="No Vouches", description=f"{target.label} has no vouch history.", tone="error"),
            )
            return

        async def render(items: Sequence, current: int, total: int) -> Notice:
            notice = Notice(title="Vouch History", description=f"History for {target.label}\nPage {current}/{total}")
            start = (current - 1) * HISTORY_PAGE_SIZE
            for offset, record in enumerate(page_slice(items, current, HISTORY_PAGE_SIZE)):
                author = await self.directory.label(record.author_id)
                notice = (
                    notice.add_field(f"{start + offset + 1}. By", f"{author} on {format_timestamp(record.created_at)}")
                    .add_field("Vouches", f"+{record.points}", inline=True)
                    .add_field("Message", record.comment)
                )
            return notice

        await self.services.pagination.open(message, records, HISTORY_PAGE_SIZE, render, page=page)

    async def vouchremove(self, ctx: CommandContext) -> None:
        message = ctx.message
        target = await self.resolve_target(message, ctx.args[0] if ctx.args else None, REMOVE_USAGE)

        removed = self.ledger.remove(target.id)
        if removed == 0:
            await self.gateway.reply(
                message,
                Notice(title="No Vouches", description=f"{target.label} has no vouches to remove.", tone="error"),
            )
            return

        await self.gateway.reply(
            message,
            Notice(title="Vouch Removal", description=f"Removed {removed} vouches for {target.label}."),
        )
        await self._notify(
            self.settings.log_channel_id,
            Notice(
                title="Vouches Removed",
                description=f"{message.author.tag} removed {removed} vouches for {target.label}",
                tone="warn",
            ),
        )

    async def restorevouches(self, ctx: CommandContext) -> None:
        message = ctx.message
        target = await self.resolve_target(message, ctx.args[0] if ctx.args else None, RESTORE_USAGE)

        restored = self.ledger.restore(target.id)
        if restored == 0:
            await self.gateway.reply(
                message,
                Notice(title="Nothing to Restore", description=f"{target.label} has no removed vouches.", tone="error"),
            )
            return

        await self.gateway.reply(
            message,
            Notice(title="Vouches Restored", description=f"Restored {restored} vouches for {target.label}."),
        )
        await self._notify(
            self.settings.log_channel_id,
            Notice(
                title="Vouches Restored",
                description=f"{message.author.tag} restored {restored} vouches for {target.label}",
                tone="warn",
            ),
        )

    async def vouchstats(self, ctx: CommandContext) -> None:
        stats = self.ledger.stats()
        notice = Notice(title="Vouch Statistics", description="System statistics").add_field(
            "Total Vouches", str(stats.total), inline=True
        )
        if stats.top_giver is not None:
            giver = await self.directory.label(stats.top_giver.user_id)
            notice = notice.add_field("Top Vouch Giver", f"{giver} ({stats.top_giver.count} vouches)", inline=True)
        if stats.top_recipient is not None:
            receiver = await self.directory.label(stats.top_recipient.user_id)
            notice = notice.add_field(
                "Most Vouched User", f"{receiver} ({stats.top_recipient.count} vouches)", inline=True
            )
        await self.gateway.reply(ctx.message, notice)

    async def vouchleaderboard(self, ctx: CommandContext) -> None:
        message = ctx.message
        page = parse_page_arg(ctx.args[0] if ctx.args else None)

        tallies = self.ledger.leaderboard()
        if not tallies:
            await self.gateway.reply(message, Notice(title="No Data", description="No vouches found.", tone="error"))
            return

        async def render(items: Sequence, current: int, total: int) -> Notice:
            notice = Notice(title="Vouch Leaderboard", description=f"Top vouched users\nPage {current}/{total}")
            start = (current - 1) * LEADERBOARD_PAGE_SIZE
            for offset, tally in enumerate(page_slice(items, current, LEADERBOARD_PAGE_SIZE)):
                label = await self.directory.label(tally.user_id)
                notice = notice.add_field(f"{start + offset + 1}.", f"{label} - {tally.count} vouches")
            return notice

        await self.services.pagination.open(message, tallies, LEADERBOARD_PAGE_SIZE, render, page=page)

    async def vouchsearch(self, ctx: CommandContext) -> None:
        message = ctx.message
        args = list(ctx.args)

        target: Optional[UserRef] = None
        if args and mention_id(args[0]) is not None:
            target = await self.resolve_target(message, args.pop(0), SEARCH_USAGE)

        page = 1
        if args and numeric_id(args[-1].lstrip("-")) is not None:
            page = parse_page_arg(args.pop())

        keyword = " ".join(args)
        if not keyword:
            raise UsageError(SEARCH_USAGE)

        records = self.ledger.search(keyword, subject_id=target.id if target else None)
        scope = f" for {target.label}" if target else ""
        if not records:
            await self.gateway.reply(
                message,
                Notice(title="No Results", description=f"No vouches found for \"{keyword}\"{scope}.", tone="error"),
            )
            return

        async def render(items: Sequence, current: int, total: int) -> Notice:
            notice = Notice(
                title="Vouch Search Results",
                description=f"Search results{scope}\nSearch: \"{keyword}\"\nPage {current}/{total}",
            )
            start = (current - 1) * SEARCH_PAGE_SIZE
            for offset, record in enumerate(page_slice(items, current, SEARCH_PAGE_SIZE)):
                subject = await self.directory.label(record.subject_id)
                author = await self.directory.label(record.author_id)
                notice = (
                    notice.add_field(f"{start + offset + 1}.", f"For {subject} by {author}")
                    .add_field("Vouches", f"+{record.points}", inline=True)
                    .add_field("Date", format_timestamp(record.created_at), inline=True)
                    .add_field("Message", record.comment)
                )
            return notice

        await self.services.pagination.open(message, records, SEARCH_PAGE_SIZE, render, page=page)

    async def vouchtransfer(self, ctx: CommandContext) -> None:
        message = ctx.message
        ids = [mention_id(token) for token in ctx.args[:2]]
        if len(ids) < 2 or None in ids:
            raise UsageError(TRANSFER_USAGE)

        source = await self.resolve_target(message, ctx.args[0], TRANSFER_USAGE)
        target = await self.resolve_target(message, ctx.args[1], TRANSFER_USAGE)

        moved = self.ledger.transfer(source.id, target.id)
        if moved == 0:
            await self.gateway.reply(
                message,
                Notice(title="No Vouches", description=f"{source.label} has no vouches to transfer.", tone="error"),
            )
            return

        await self.gateway.reply(
            message,
            Notice(
                title="Vouch Transfer",
                description=f"Transferred {moved} vouches from {source.label} to {target.label}.",
            ),
        )
        await self._notify(
            self.settings.log_channel_id,
            Notice(
                title="Vouch Transferred",
                description=(
                    f"{message.author.tag} transferred {moved} vouches from {source.label} to {target.label}"
                ),
                tone="warn",
            ),
        )
        await self._notify(
            self.settings.notification_channel_id,
            Notice(
                title="Vouch Transfer Notification",
                description=f"Vouches transferred from {source.label} to {target.label}",
            ),
        )

    # ------------------------------------------------------------------
    # Static replies
    # ------------------------------------------------------------------

    async def help(self, ctx: CommandContext) -> None:
        notice = (
            Notice(title=HELP_TITLE, description="Here are all available commands:", tone="info", footer=HELP_FOOTER)
            .add_field("Vouch Commands", "\n" + HELP_VOUCH_COMMANDS)
            .add_field("Admin Commands", "\n" + HELP_ADMIN_COMMANDS)
            .add_field("Other", "\n" + HELP_OTHER_COMMANDS)
        )
        await self.gateway.reply(ctx.message, notice)

    async def koala(self, ctx: CommandContext) -> None:
        notice = (
            Notice(
                title=ABOUT_TITLE,
                description=ABOUT_MESSAGE,
                tone="info",
                footer=ABOUT_FOOTER,
                image_url=self.gateway.thumbnail_url,
            )
            .add_field("Commands", "Use !help to see all commands", inline=True)
            .add_field("Version", BOT_VERSION, inline=True)
        )
        if self.settings.owner_ids:
            owner = await self.directory.label(min(self.settings.owner_ids))
            notice = notice.add_field("Owner", owner, inline=True)
        await self.gateway.reply(ctx.message, notice)


async def announce_chat_joined(services, chat_id: int, title: Optional[str]) -> Optional[int]:
    """Post a "Group Joined" notice with a fresh invite link to the notification chat."""
    invite = await services.gateway.create_invite(chat_id)
    members = await services.gateway.member_count(chat_id)
    notice = Notice(
        title="Group Joined",
        description=(
            f"Joined {title or 'an untitled chat'} ({chat_id}) with "
            f"{members if members is not None else 'an unknown number of'} members. "
            f"Invite: {invite or 'No invite link generated'}"
        ),
    )
    logger.info(f"Bot added to chat {chat_id} ({title})")
    if services.settings.notification_channel_id is None:
        return None
    return await services.gateway.send(services.settings.notification_channel_id, notice)
