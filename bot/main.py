"""Main bot entry point - unified for both polling and webhook modes."""
import asyncio
import logging
import sys
from aiogram import Bot, Dispatcher
from aiogram.enums import ParseMode
from aiogram.client.default import DefaultBotProperties
from aiogram.types import BotCommand, BotCommandScopeAllPrivateChats

from bot.config import Config
from bot.container import ServiceContainer
from bot.handlers import (
    create_command_handlers,
    create_community_handlers,
    create_error_handlers,
    create_message_handlers,
)
from bot.middlewares.rate_limit import RateLimitMiddleware
from bot.middlewares.session import SessionMiddleware
from database.db import db

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler("bot.log")
    ]
)
logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 300


def build_dispatcher(container: ServiceContainer) -> Dispatcher:
    """Dispatcher with the throughput limiter, session loading and all routers."""
    dispatcher = Dispatcher()

    # Outer middlewares run before filters, so routing can look at the session.
    rate_limit = RateLimitMiddleware(container.message_limiter)
    session = SessionMiddleware(container.sessions, container.identities)
    for observer in (dispatcher.message, dispatcher.callback_query):
        observer.outer_middleware(rate_limit)
        observer.outer_middleware(session)

    dispatcher.include_router(create_error_handlers())
    dispatcher.include_router(create_command_handlers(container))
    dispatcher.include_router(create_community_handlers(container))
    dispatcher.include_router(create_message_handlers(container))  # Last, so it doesn't intercept commands
    return dispatcher


class TelegramBot:
    """Owns the aiogram Bot/Dispatcher, the service container and background cleanup."""

    def __init__(self, config: Config):
        """Initialize the bot."""
        self.config = config
        self.bot: Bot = None
        self.dispatcher: Dispatcher = None
        self.container: ServiceContainer = None
        self._running = False
        self._cleanup_task: asyncio.Task | None = None
        self.started_at: float | None = None

    async def initialize(self):
        """Initialize all bot components."""
        logger.info("=" * 70)
        logger.info("🤖 COMMUNITY BOT - INITIALIZING")
        logger.info("=" * 70)

        try:
            # Initialize database
            logger.info("📊 Initializing database...")
            await db.connect()
            await db.require_schema()
            logger.info("✅ Database initialized")

            # Initialize service container
            logger.info("🔧 Initializing services...")
            self.container = await ServiceContainer.create(self.config)
            logger.info("✅ Services initialized")

            # Initialize bot
            logger.info("🤖 Initializing bot...")
            self.bot = Bot(
                token=self.config.bot_token,
                default=DefaultBotProperties(parse_mode=ParseMode.HTML)
            )
            logger.info("✅ Bot initialized")

            # Initialize dispatcher and handlers
            logger.info("📡 Initializing dispatcher...")
            self.dispatcher = build_dispatcher(self.container)
            logger.info("✅ All handlers registered")

            logger.info("=" * 70)
            logger.info("✅ BOT INITIALIZATION COMPLETE")
            logger.info("=" * 70)

        except Exception as e:
            logger.error(f"❌ Failed to initialize bot: {e}", exc_info=True)
            raise

    async def start(self):
        """Start the bot and display info."""
        if self._running:
            logger.warning("Bot is already running")
            return

        logger.info("=" * 70)
        logger.info("🚀 STARTING BOT")
        logger.info("=" * 70)

        try:
            self._running = True
            self.started_at = asyncio.get_running_loop().time()

            # Purges expired sessions and rate-limit counters
            self._cleanup_task = asyncio.create_task(self._periodic_cleanup())

            bot_info = await self.bot.get_me()
            logger.info(f"📱 Bot username: @{bot_info.username}")
            logger.info(f"🆔 Bot ID: {bot_info.id}")
            logger.info(f"🔗 Auth service: {self.config.supabase_url}")
            logger.info(f"⏱️  Magic link TTL: {self.config.magic_link_ttl_seconds // 3600}h")
            logger.info(
                f"🚦 Rate limits: {self.config.message_rate_limit}/{self.config.message_rate_window}s messages, "
                f"{self.config.magic_link_rate_limit}/{self.config.magic_link_rate_window}s magic links"
            )
            logger.info(f"🌐 Mode: {'Production (webhook)' if self.config.is_production else 'Development (polling)'}")

            logger.info("=" * 70)
            logger.info("✅ BOT IS RUNNING")
            logger.info("=" * 70)

            await self._set_command_menu()

        except Exception as e:
            logger.error(f"❌ Failed to start bot: {e}", exc_info=True)
            self._running = False
            raise

    async def _set_command_menu(self):
        """Configure Telegram's "/" command list for private chats."""
        try:
            await self.bot.set_my_commands(
                commands=[
                    BotCommand(command="start", description="Home"),
                    BotCommand(command="help", description="Help"),
                    BotCommand(command="link", description="Link your email"),
                    BotCommand(command="link_status", description="Your link status"),
                    BotCommand(command="communities", description="Browse communities"),
                    BotCommand(command="my_communities", description="Your communities"),
                    BotCommand(command="create_community", description="Create a community"),
                    BotCommand(command="cancel", description="Cancel the current flow"),
                ],
                scope=BotCommandScopeAllPrivateChats(),
            )
        except Exception as e:
            logger.warning(f"Failed to set command menu: {e}")

    async def _periodic_cleanup(self):
        while self._running:
            try:
                await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
                if self.container:
                    await self.container.run_cleanup()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Periodic cleanup error: {e}")

    async def stop(self):
        """Stop the bot and cleanup."""
        if not self._running:
            logger.warning("Bot is not running")
            return

        logger.info("=" * 70)
        logger.info("🛑 STOPPING BOT")
        logger.info("=" * 70)

        try:
            self._running = False

            if self._cleanup_task:
                self._cleanup_task.cancel()
                self._cleanup_task = None

            if self.container:
                logger.info("🧹 Cleaning up services...")
                await self.container.cleanup()
                logger.info("✅ Services cleaned up")

            if self.bot:
                logger.info("🤖 Closing bot session...")
                await self.bot.session.close()
                logger.info("✅ Bot session closed")

            logger.info("📊 Closing database...")
            await db.close()
            logger.info("✅ Database closed")

            logger.info("=" * 70)
            logger.info("✅ BOT STOPPED")
            logger.info("=" * 70)

        except Exception as e:
            logger.error(f"❌ Error stopping bot: {e}", exc_info=True)
            raise

    async def run_polling(self):
        """Run bot in polling mode (for local development)."""
        await self.start()

        try:
            logger.info("📡 Starting polling...")
            await self.dispatcher.start_polling(
                self.bot,
                allowed_updates=self.dispatcher.resolve_used_update_types()
            )
        except KeyboardInterrupt:
            logger.info("⌨️  Received interrupt signal")
        except Exception as e:
            logger.error(f"❌ Polling error: {e}", exc_info=True)
        finally:
            await self.stop()

    def is_running(self) -> bool:
        """Check if bot is running."""
        return self._running

    def uptime_seconds(self) -> int:
        if self.started_at is None:
            return 0
        return int(asyncio.get_running_loop().time() - self.started_at)


async def main():
    """Main entry point for polling mode."""
    try:
        config = Config.from_env()
        logger.info("✅ Configuration loaded")

        bot = TelegramBot(config)
        await bot.initialize()

        await bot.run_polling()

    except KeyboardInterrupt:
        logger.info("⌨️  Bot stopped by user")
    except Exception as e:
        logger.error(f"❌ Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("⌨️  Bot stopped by user")
