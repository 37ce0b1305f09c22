"""Async startup — init config, DB, rule store, engine; watch sessions; clean shutdown."""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from dataclasses import dataclass

from autopilot.auto.activity import ActivityLog
from autopilot.auto.engine import AutomationEngine
from autopilot.auto.executor import ActionExecutor
from autopilot.auto.limiter import RateLimiter
from autopilot.auto.signals import SignalEmitter
from autopilot.auto.store import RuleStore
from autopilot.config import AUTOPILOT_HOME, Config, get_config
from autopilot.db import queries
from autopilot.db.database import close_database, init_database
from autopilot.db.models import AutomationConfig
from autopilot.sessions.manager import TmuxSessions
from autopilot.sessions.monitor import OutputMonitor
from autopilot.utils.errors import ErrorHandler
from autopilot.utils.logger import get_logger, set_debug_logging, setup_logging

logger = get_logger("autopilot.main")

ENGINE_SIGNAL_SESSION = "autopilot"


@dataclass
class Services:
    """Everything wired together for one process."""

    store: RuleStore
    limiter: RateLimiter
    activity: ActivityLog
    sessions: TmuxSessions
    executor: ActionExecutor
    engine: AutomationEngine
    signals: SignalEmitter


def configure_logging(cfg: Config, console: bool | None = None) -> None:
    settings = {"file": str(AUTOPILOT_HOME / "autopilot.log"), **cfg.logging_config}
    setup_logging(settings, level=cfg.log_level, console=console)


async def build_services(cfg: Config) -> Services:
    """Open the database and load the rule store, activity log and engine."""
    AUTOPILOT_HOME.mkdir(parents=True, exist_ok=True)
    await init_database(cfg.db_path)

    defaults = AutomationConfig.from_dict(cfg.automation_defaults)
    limiter = RateLimiter()
    store = RuleStore(
        backend=queries,
        limiter=limiter,
        defaults=defaults,
        install_defaults=cfg.install_default_presets,
    )
    await store.load()

    activity = ActivityLog(capacity=store.config.max_activity_events, backend=queries)
    await activity.load()

    async def _apply_runtime_config(config: AutomationConfig) -> None:
        set_debug_logging(config.debug_logging)
        await activity.resize(config.max_activity_events)

    set_debug_logging(store.config.debug_logging)
    store.on_config_change(_apply_runtime_config)

    sessions = TmuxSessions()
    signals = SignalEmitter(cfg.signal_dir, cfg.signal_file_prefix)
    executor = ActionExecutor(
        sessions,
        signals,
        tmux_allowlist=cfg.tmux_allowlist,
    )
    engine = AutomationEngine(
        store,
        limiter,
        executor,
        activity,
        agent_prefix=cfg.session_prefix,
        max_scan_chars=cfg.max_scan_chars,
    )
    return Services(store, limiter, activity, sessions, executor, engine, signals)


def escalation_signal(signals: SignalEmitter):
    """Build an ``ErrorHandler`` callback that publishes repeated errors as signals.

    Errors from a session monitor (context ``monitor:<session>``) land on that
    session's signal file; anything else on ``ENGINE_SIGNAL_SESSION``.
    """

    async def _escalate(message: str, context: str) -> None:
        _, _, session_name = context.partition(":")
        payload = json.dumps({"message": message, "context": context})
        await asyncio.to_thread(
            signals.emit, session_name or ENGINE_SIGNAL_SESSION, "error", payload
        )

    return _escalate


class SessionWatcher:
    """Start a monitor for every prefixed tmux session and stop it when the session ends."""

    def __init__(self, services: Services, prefix: str, error_handler: ErrorHandler) -> None:
        self.services = services
        self.prefix = prefix
        self.error_handler = error_handler
        self.monitors: dict[str, OutputMonitor] = {}
        self.tasks: dict[str, asyncio.Task] = {}

    async def discover(self) -> None:
        names = set(
            await asyncio.to_thread(self.services.sessions.list_sessions, self.prefix)
        )
        for name in sorted(names - self.monitors.keys()):
            monitor = OutputMonitor(
                name, self.services.sessions, self.services.engine, self.error_handler
            )
            self.monitors[name] = monitor
            self.tasks[name] = asyncio.create_task(monitor.start(), name=f"monitor-{name}")
        for name in sorted(self.monitors.keys() - names):
            logger.info(f"Session {name} ended")
            await self._stop(name)

    async def _stop(self, name: str) -> None:
        monitor = self.monitors.pop(name)
        await monitor.stop()
        task = self.tasks.pop(name, None)
        if task and not task.done():
            try:
                await asyncio.wait_for(task, timeout=5)
            except asyncio.TimeoutError:
                task.cancel()

    async def stop_all(self) -> None:
        for name in list(self.monitors):
            await self._stop(name)


async def run() -> None:
    """Main async entry point: watch sessions and run rules until SIGINT/SIGTERM."""
    cfg = get_config()
    problems = cfg.validate()
    if problems:
        print(f"❌ Invalid config ({cfg.config_path}): {', '.join(problems)}")
        sys.exit(1)

    configure_logging(cfg)
    logger.info("Autopilot starting up...")

    services = await build_services(cfg)
    error_handler = ErrorHandler(on_escalate=escalation_signal(services.signals))
    await error_handler.start()
    watcher = SessionWatcher(services, cfg.session_prefix, error_handler)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _request_shutdown(sig: signal.Signals) -> None:
        logger.info(f"Received {sig.name}, shutting down...")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _request_shutdown, sig)

    state = "on" if services.store.config.enabled else "off"
    logger.info(
        f"Autopilot is online: watching '{cfg.session_prefix}*' sessions, "
        f"{len(services.store.enabled_rules())} rules enabled, automation {state}"
    )

    try:
        while not shutdown_event.is_set():
            try:
                await watcher.discover()
            except Exception as e:
                await error_handler.handle(e, "discovery")
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=cfg.discovery_interval_s)
            except asyncio.TimeoutError:
                pass
    finally:
        logger.info("Shutting down...")
        await watcher.stop_all()
        await services.engine.drain(timeout=10)
        await error_handler.stop()
        await close_database()
        logger.info("Autopilot stopped.")
