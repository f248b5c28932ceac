#!/usr/bin/env python3
"""Telegram bot that opens the OddsFlow Radar Mini App."""

import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update, WebAppInfo
from telegram.error import TelegramError
from telegram.ext import Application, CallbackContext, CommandHandler

from oddsflow.config import Config
from oddsflow.log_utils import LoggerHelper

logger = logging.getLogger(__name__)
log_helper = LoggerHelper.for_logger(logger)

WELCOME_TEXT = (
    "📡 OddsFlow Radar\n\n"
    "Live signals, war-room chat and the community lounge in one place.\n"
    "Tap the button below to open the radar."
)
HELP_TEXT = (
    "/start - open the radar\n"
    "/help - show this message"
)


def build_launch_markup(miniapp_url: str) -> InlineKeyboardMarkup:
    """Inline keyboard with a single WebApp button."""

    return InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton(
                    text="🚀 Open Radar",
                    web_app=WebAppInfo(url=miniapp_url),
                )
            ]
        ]
    )


class LauncherBot:
    """Polling bot whose only job is to hand users the Mini App button."""

    def __init__(self, token: str, cfg: Config) -> None:
        cfg.validate_bot()
        self._cfg = cfg
        self._application: Application = (
            Application.builder().token(token).build()
        )
        self._application.add_handler(CommandHandler("start", self.start))
        self._application.add_handler(CommandHandler("help", self.help))
        self._application.add_error_handler(self._error_handler)
        log_helper.info("BotInit", "Launcher bot initialized")

    @property
    def application(self) -> Application:
        return self._application

    async def start(self, update: Update, context: CallbackContext) -> None:
        del context
        message = update.effective_message
        if message is None:
            return
        user = update.effective_user
        log_helper.info(
            "BotStart",
            user_id=getattr(user, "id", None),
            chat_id=getattr(update.effective_chat, "id", None),
        )
        await message.reply_text(
            WELCOME_TEXT,
            reply_markup=build_launch_markup(self._cfg.MINIAPP_URL),
        )

    async def help(self, update: Update, context: CallbackContext) -> None:
        del context
        if update.effective_message is None:
            return
        await update.effective_message.reply_text(HELP_TEXT)

    async def _error_handler(self, update: object, context: CallbackContext) -> None:
        log_helper.error(
            "BotError",
            "Exception while handling update",
            update=update,
            exc_info=context.error,
        )
        if isinstance(update, Update) and update.effective_message:
            try:
                await update.effective_message.reply_text(
                    "Something went wrong. Please try again."
                )
            except TelegramError:
                pass

    def run(self) -> None:
        log_helper.info("BotPolling", "Starting polling mode")
        try:
            self._application.run_polling(
                drop_pending_updates=True,
                allowed_updates=Update.ALL_TYPES,
            )
        finally:
            log_helper.info("BotShutdown", "Launcher bot stopped")
