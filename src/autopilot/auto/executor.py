"""Action executor — perform one interpolated action against a tmux session."""

from __future__ import annotations

import asyncio
import shlex

from autopilot.auto.signals import SignalEmitter, parse_signal
from autopilot.db.models import Action, ActionOutcome
from autopilot.utils.errors import SessionActionError
from autopilot.utils.logger import get_logger

logger = get_logger("autopilot.auto.executor")


def build_tmux_args(value: str, session_name: str, allowlist=()) -> list[str]:
    """Turn a ``tmux_command`` action value into a tmux argv.

    The value is split like a shell would (quotes respected, nothing
    expanded), ``{session}`` placeholders are substituted, a leading ``tmux``
    is dropped and ``-t <session>`` is added when no target is given.

    Args:
        value: Interpolated action value, e.g. ``'select-window -n'``.
        session_name: Session the rule fired for.
        allowlist: Permitted sub-commands; empty allows any.

    Raises:
        ValueError: If the value is empty or the sub-command is not allowed.
    """
    args = [a.replace("{session}", session_name) for a in shlex.split(value)]
    if args and args[0] == "tmux":
        args = args[1:]
    if not args:
        raise ValueError("tmux_command has no sub-command")
    if allowlist and args[0] not in allowlist:
        raise ValueError(f"tmux sub-command {args[0]!r} is not allowed")
    if "-t" not in args[1:]:
        args[1:1] = ["-t", session_name]
    return args


class ActionExecutor:
    """Dispatch actions by type through a function table.

    Args:
        sessions: tmux collaborator (``TmuxSessions``).
        signals: Signal emitter.
        tmux_allowlist: Sub-commands ``tmux_command`` may run; empty allows any.
    """

    def __init__(
        self,
        sessions,
        signals: SignalEmitter | None = None,
        tmux_allowlist=(),
    ) -> None:
        self.sessions = sessions
        self.signals = signals or SignalEmitter()
        self.tmux_allowlist = tuple(tmux_allowlist)
        self._handlers = {
            "send_text": self._send_text,
            "send_keys": self._send_keys,
            "tmux_command": self._tmux_command,
            "signal": self._signal,
            "notify_only": self._notify_only,
        }

    async def execute(self, action: Action, session_name: str, value: str) -> ActionOutcome:
        """Execute one action; failures become an unsuccessful outcome.

        Args:
            action: The action being run (its ``delay_ms`` is handled by the caller).
            session_name: Target session.
            value: The action value after interpolation.

        Returns:
            ``ActionOutcome`` recording success or the error text.
        """
        outcome = ActionOutcome(action_id=action.id, type=action.type, value=value)
        handler = self._handlers.get(action.type)
        if handler is None:
            outcome.success = False
            outcome.error = f"Unknown action type: {action.type}"
            logger.warning(f"[{session_name}] {outcome.error}")
            return outcome
        try:
            await handler(session_name, value)
        except SessionActionError as e:
            outcome.success = False
            outcome.error = str(e)
            logger.warning(f"[{session_name}] {action.type} failed: {e}")
        except Exception as e:
            outcome.success = False
            outcome.error = f"{type(e).__name__}: {e}"
            logger.warning(f"[{session_name}] {action.type} failed: {outcome.error}")
        return outcome

    async def _send_text(self, session_name: str, value: str) -> None:
        await asyncio.to_thread(self.sessions.send_text, session_name, value)

    async def _send_keys(self, session_name: str, value: str) -> None:
        await asyncio.to_thread(self.sessions.send_keys, session_name, value)

    async def _tmux_command(self, session_name: str, value: str) -> None:
        args = build_tmux_args(value, session_name, self.tmux_allowlist)
        await asyncio.to_thread(self.sessions.run_command, session_name, args)

    async def _signal(self, session_name: str, value: str) -> None:
        signal_type, payload = parse_signal(value)
        await asyncio.to_thread(self.signals.emit, session_name, signal_type, payload)

    async def _notify_only(self, session_name: str, value: str) -> None:
        logger.info(f"[{session_name}] {value}")
