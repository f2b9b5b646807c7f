"""Main entry point for the ingestion bot."""

import asyncio
import signal
import sys

from tg_ingest.answers import QuestionAnswerer
from tg_ingest.bot import ALLOWED_UPDATES, IngestionBot
from tg_ingest.config import Settings, get_settings, masked_config
from tg_ingest.embeddings import ProviderRegistry
from tg_ingest.exceptions import ConfigurationError
from tg_ingest.logging import get_logger, setup_logging
from tg_ingest.pipeline import IngestionPipeline
from tg_ingest.privacy import PrivacyGate
from tg_ingest.storage import ConversationStore, OptOutStore, create_pool, ensure_schema

WEBHOOK_PATH = "telegram"


def install_signal_handlers(stop_event: asyncio.Event) -> None:
    """Set *stop_event* on SIGTERM or SIGINT so shutdown runs the cleanup path."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)


async def serve(settings: Settings) -> None:
    """Start storage, select the embedding provider and run the bot until cancelled."""
    log = get_logger("tg_ingest.main")

    pool = await create_pool(settings.postgres_dsn.get_secret_value())
    await ensure_schema(pool)

    # Provider selection happens exactly once per process
    registry = ProviderRegistry.from_settings(settings)

    conversations = ConversationStore(pool)
    pipeline = IngestionPipeline(
        privacy=PrivacyGate(OptOutStore(pool), conversations),
        registry=registry,
        store=conversations,
    )
    answerer = QuestionAnswerer.from_settings(settings, conversations)
    application = IngestionBot(pipeline, answerer).build_application(
        settings.telegram_bot_token.get_secret_value()
    )
    log.info(
        "bot_created",
        mode=settings.bot_mode,
        embeddings=registry.provider_label(),
        question_answering=answerer is not None,
    )

    stop_event = asyncio.Event()
    install_signal_handlers(stop_event)

    try:
        async with application:
            await application.start()
            if settings.bot_mode == "webhook":
                await application.updater.start_webhook(  # type: ignore[union-attr]
                    listen="0.0.0.0",  # nosec B104
                    port=settings.port,
                    url_path=WEBHOOK_PATH,
                    webhook_url=f"{(settings.webhook_url or '').rstrip('/')}/{WEBHOOK_PATH}",
                    allowed_updates=ALLOWED_UPDATES,
                    secret_token=(
                        settings.webhook_secret.get_secret_value()
                        if settings.webhook_secret
                        else None
                    ),
                )
            else:
                await application.updater.start_polling(  # type: ignore[union-attr]
                    allowed_updates=ALLOWED_UPDATES
                )
            log.info("bot_running", mode=settings.bot_mode)

            try:
                await stop_event.wait()
                log.info("shutdown_signal_received")
            finally:
                await application.updater.stop()  # type: ignore[union-attr]
                await application.stop()
    finally:
        if answerer is not None:
            await answerer.close()
        await registry.close()
        await pool.close()
        log.info("tg_ingest_stopped")


async def main() -> None:
    """Main application entry point."""
    try:
        settings = get_settings()
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    setup_logging()
    log = get_logger("tg_ingest.main")
    log.info("starting_tg_ingest", environment=settings.environment, **masked_config(settings))
    if not settings.has_embedding_credentials:
        log.warning(
            "no_embedding_credentials",
            detail="messages will be ingested without vector embeddings",
        )

    try:
        await serve(settings)
    except (KeyboardInterrupt, asyncio.CancelledError):
        log.info("shutdown_requested")


def run() -> None:
    """Run the application."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
