"""Service wiring and the long-running entry point."""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass

from dotenv import load_dotenv

from mail_assistant.agent.admin_commands import AdminCommandProcessor
from mail_assistant.agent.ingestor import MailboxFactory, MailIngestor
from mail_assistant.agent.reminder_skip import ReminderSkipSignal
from mail_assistant.agent.reports import ReportService
from mail_assistant.agent.router import ReplyRouter
from mail_assistant.ai.actions.handlers import build_default_registry
from mail_assistant.ai.actions.registry import ActionRegistry
from mail_assistant.ai.orchestrator import AIOrchestrator
from mail_assistant.ai.providers.base import ProviderGateway
from mail_assistant.ai.providers.factory import create_provider
from mail_assistant.ai.scheduler import RequestScheduler
from mail_assistant.config import ConfigError, Settings
from mail_assistant.directory.users import InMemoryUserDirectory, UserDirectory, UserRole, new_user
from mail_assistant.mail.sender import MailSender, SmtpMailSender
from mail_assistant.security.gate import SecurityGate
from mail_assistant.storage.context_store import ContextStore
from mail_assistant.storage.maintenance import create_maintenance_scheduler

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


@dataclass
class Assistant:
    """Every service of one running assistant, constructed explicitly."""

    settings: Settings
    directory: UserDirectory
    provider: ProviderGateway
    scheduler: RequestScheduler
    store: ContextStore
    registry: ActionRegistry
    orchestrator: AIOrchestrator
    gate: SecurityGate
    sender: MailSender
    reports: ReportService
    commands: AdminCommandProcessor
    router: ReplyRouter
    ingestor: MailIngestor


def seed_directory(settings: Settings) -> InMemoryUserDirectory:
    """In-memory directory holding just the configured administrator."""
    directory = InMemoryUserDirectory()
    if settings.admin_email:
        directory.add(new_user(settings.admin_email, settings.admin_name, role=UserRole.ADMIN))
    else:
        logger.warning("ADMIN_EMAIL is not set; admin commands will be rejected")
    return directory


def log_reminder_skip(user_id: str, skip: ReminderSkipSignal) -> None:
    logger.info(
        "Reminder skip for %s: morning=%s evening=%s (%s)",
        user_id,
        skip.skip_morning,
        skip.skip_evening,
        skip.reason,
    )


def build_assistant(
    settings: Settings,
    *,
    directory: UserDirectory | None = None,
    provider: ProviderGateway | None = None,
    sender: MailSender | None = None,
    client_factory: MailboxFactory | None = None,
) -> Assistant:
    """Construct and connect every service. Nothing starts running here."""
    directory = directory or seed_directory(settings)
    provider = provider or create_provider(settings.ai)
    scheduler = RequestScheduler.from_settings(settings.ai)
    store = ContextStore(
        settings.context.file,
        provider,
        scheduler=scheduler,
        compression_threshold=settings.context.compression_threshold,
        keep_recent=settings.context.keep_recent,
        debounce_seconds=settings.context.debounce_seconds,
    )
    registry = build_default_registry(directory, store)
    orchestrator = AIOrchestrator(provider, registry, scheduler)
    gate = SecurityGate(directory, settings.max_violations)
    sender = sender or SmtpMailSender(settings.smtp, settings.mailbox, settings.admin_email)
    reports = ReportService(store, orchestrator, sender)
    commands = AdminCommandProcessor(
        directory, sender, store, reports=reports, on_reminder_skip=log_reminder_skip
    )
    router = ReplyRouter(
        directory,
        gate,
        orchestrator,
        store,
        sender,
        commands,
        on_reminder_skip=log_reminder_skip,
    )
    ingestor = MailIngestor(settings.mailbox, directory, router, client_factory=client_factory)
    return Assistant(
        settings=settings,
        directory=directory,
        provider=provider,
        scheduler=scheduler,
        store=store,
        registry=registry,
        orchestrator=orchestrator,
        gate=gate,
        sender=sender,
        reports=reports,
        commands=commands,
        router=router,
        ingestor=ingestor,
    )


async def serve(settings: Settings) -> None:
    """Run the assistant until SIGINT/SIGTERM."""
    settings.require_mailbox()
    if not settings.smtp.host:
        raise ConfigError("Missing SMTP_HOST")

    assistant = build_assistant(settings)
    await assistant.store.load()

    maintenance = create_maintenance_scheduler(
        assistant.store, settings.context.maintenance_minutes
    )
    maintenance.start()

    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, assistant.ingestor.stop)
    except (NotImplementedError, AttributeError):
        pass

    try:
        await assistant.ingestor.run()
    finally:
        maintenance.shutdown(wait=False)
        await assistant.store.close()
        logger.info("Assistant stopped")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )


def main() -> None:
    """Start the assistant. Called by `python -m mail_assistant`."""
    load_dotenv()
    configure_logging()
    try:
        asyncio.run(serve(Settings.from_env()))
    except KeyboardInterrupt:
        # Ctrl+C on Windows (no add_signal_handler) arrives here
        logger.info("Interrupted; goodbye")
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(2) from exc
