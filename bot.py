"""
Telegram Vouch Bot - entrypoint.

Runs with long polling by default, or as a webhook listener when WEBHOOK_URL
is set. `python bot.py` and the `vouchbot` console script both land in main().
"""
import logging
import sys
import traceback

from telegram import Update
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    ChatMemberHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

import vouch_db
from config import Settings, get_final_webhook_url, load_settings
from vouchbot.errors import ProcessFatalError
from vouchbot.handlers.messages import handle_my_chat_member, handle_page_callback, handle_text_message
from vouchbot.logging import configure_logging
from vouchbot.runtime import SERVICES_KEY, build_services

logger = logging.getLogger("vouchbot")

HOUSEKEEPING_INTERVAL_SECONDS = 60


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE):
    """Log errors that escaped a handler without stopping the bot."""
    error = context.error
    if error is None:
        return
    logger.error(
        f"Unhandled error while processing update {getattr(update, 'update_id', None)}: {error}\n"
        + "".join(traceback.format_exception(type(error), error, error.__traceback__))
    )


async def refresh_sticky_notices(context: ContextTypes.DEFAULT_TYPE):
    services = context.application.bot_data.get(SERVICES_KEY)
    if services is None:
        return
    posted = await services.sticky.refresh_all()
    logger.debug(f"Sticky refresh posted {posted} notices")


async def housekeeping(context: ContextTypes.DEFAULT_TYPE):
    services = context.application.bot_data.get(SERVICES_KEY)
    if services is None:
        return
    purged = services.cooldowns.purge()
    expired = await services.pagination.sweep()
    if purged or expired:
        logger.debug(f"Housekeeping: {purged} cooldowns purged, {expired} page views expired")


def build_application(settings: Settings) -> Application:
    async def post_init(application: Application) -> None:
        bot_username = application.bot.username
        application.bot_data[SERVICES_KEY] = build_services(settings, application.bot, bot_username=bot_username)
        logger.info(f"Bot @{bot_username} ready; watching {len(settings.allowed_channel_ids)} chats")

    async def post_shutdown(application: Application) -> None:
        services = application.bot_data.get(SERVICES_KEY)
        if services is not None:
            await services.commands.drain()
            await services.pagination.close()

    application = (
        Application.builder()
        .token(settings.bot_token)
        .connect_timeout(10)
        .read_timeout(20)
        .write_timeout(20)
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )

    application.add_handler(
        MessageHandler((filters.TEXT | filters.CAPTION) & ~filters.UpdateType.EDITED, handle_text_message)
    )
    application.add_handler(CallbackQueryHandler(handle_page_callback, pattern=r"^page:"))
    application.add_handler(ChatMemberHandler(handle_my_chat_member, ChatMemberHandler.MY_CHAT_MEMBER))
    application.add_error_handler(error_handler)

    if application.job_queue is not None:
        if settings.allowed_channel_ids and settings.sticky_refresh_seconds > 0:
            application.job_queue.run_repeating(
                refresh_sticky_notices,
                interval=settings.sticky_refresh_seconds,
                first=10,
                name="sticky-refresh",
            )
        application.job_queue.run_repeating(
            housekeeping,
            interval=HOUSEKEEPING_INTERVAL_SECONDS,
            first=HOUSEKEEPING_INTERVAL_SECONDS,
            name="housekeeping",
        )
    else:
        logger.warning("JobQueue unavailable; install python-telegram-bot[job-queue] for sticky notices")

    return application


def main():
    try:
        settings = load_settings()
    except ValueError as e:
        configure_logging(logging.INFO)
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    configure_logging(getattr(logging, settings.log_level, logging.INFO))

    if not settings.bot_token:
        logger.error("BOT_TOKEN not set in environment variables!")
        sys.exit(1)
    if not settings.owner_ids:
        logger.warning("OWNER_IDS is empty; privileged commands are unavailable")

    vouch_db.set_db_path(settings.database_url)
    try:
        vouch_db.init_db()
    except ProcessFatalError as e:
        logger.error(f"Cannot start: {e}")
        sys.exit(1)

    application = build_application(settings)

    if settings.webhook_url:
        try:
            webhook_url = get_final_webhook_url(settings)
        except ValueError as e:
            logger.error(f"Invalid webhook URL: {e}")
            sys.exit(1)
        logger.info(f"Starting bot in webhook mode on port {settings.port}...")
        application.run_webhook(
            listen="0.0.0.0",
            port=settings.port,
            url_path=settings.bot_token,
            webhook_url=webhook_url,
            allowed_updates=Update.ALL_TYPES,
        )
    else:
        logger.info("Starting bot in polling mode...")
        application.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
