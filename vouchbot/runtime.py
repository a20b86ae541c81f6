"""
Wiring for the running bot.

`build_services` constructs every long-lived object once at startup. The
result is stored in `application.bot_data["services"]` so Telegram handlers
can reach it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from config import Settings
from vouchbot.engine.router import CommandRouter
from vouchbot.handlers.commands import VouchCommands
from vouchbot.services.cooldowns import CooldownTracker
from vouchbot.services.directory import UserDirectory
from vouchbot.services.gateway import MessagingGateway
from vouchbot.services.ledger import VouchLedger
from vouchbot.services.pagination import PaginationController
from vouchbot.services.sticky import StickyNoticeManager

SERVICES_KEY = "services"


@dataclass
class Services:
    settings: Settings
    gateway: MessagingGateway
    directory: UserDirectory
    ledger: VouchLedger
    cooldowns: CooldownTracker
    pagination: PaginationController
    sticky: StickyNoticeManager
    commands: Optional[VouchCommands] = field(default=None, repr=False)
    router: Optional[CommandRouter] = field(default=None, repr=False)


def build_services(
    settings: Settings,
    bot,
    bot_username: Optional[str] = None,
    gateway: Optional[MessagingGateway] = None,
) -> Services:
    gateway = gateway or MessagingGateway(bot, thumbnail_url=settings.thumbnail_url)
    services = Services(
        settings=settings,
        gateway=gateway,
        directory=UserDirectory(gateway),
        ledger=VouchLedger(vouch_cooldown_seconds=settings.vouch_cooldown_seconds),
        cooldowns=CooldownTracker(),
        pagination=PaginationController(gateway, timeout=settings.pagination_timeout_seconds),
        sticky=StickyNoticeManager(gateway, sorted(settings.allowed_channel_ids)),
    )
    services.commands = VouchCommands(services)
    services.router = CommandRouter(
        settings=settings,
        gateway=gateway,
        cooldowns=services.cooldowns,
        handlers=services.commands.table(),
        sticky=services.sticky,
        bot_username=bot_username,
    )
    return services
