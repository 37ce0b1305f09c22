"""tmux session access — list, capture and drive sessions via libtmux."""

from __future__ import annotations

import libtmux

from autopilot.utils.errors import SessionActionError
from autopilot.utils.logger import get_logger

logger = get_logger("autopilot.sessions.manager")

_NO_SERVER_MARKERS = ("no server running", "error connecting to", "no such file or directory")


class TmuxSessions:
    """Thin synchronous wrapper over the tmux server.

    Every call blocks on a tmux subprocess; async callers run these methods
    through ``asyncio.to_thread``.
    """

    def __init__(self, server: libtmux.Server | None = None) -> None:
        self._server = server

    @property
    def server(self) -> libtmux.Server:
        if self._server is None:
            self._server = libtmux.Server()
        return self._server

    def _cmd(self, session_name: str, *args: str) -> list[str]:
        """Run one tmux command and return its stdout lines.

        Raises:
            SessionActionError: If tmux reports an error.
        """
        proc = self.server.cmd(*args)
        if proc.stderr or getattr(proc, "returncode", 0):
            message = " ".join(proc.stderr) or f"tmux exited with {proc.returncode}"
            raise SessionActionError(session_name, message)
        return proc.stdout

    def list_sessions(self, prefix: str = "") -> list[str]:
        """Names of live tmux sessions, optionally only those starting with ``prefix``.

        Returns an empty list when no tmux server is running.
        """
        proc = self.server.cmd("list-sessions", "-F", "#{session_name}")
        if proc.stderr:
            error = " ".join(proc.stderr).lower()
            if not any(marker in error for marker in _NO_SERVER_MARKERS):
                logger.warning(f"tmux list-sessions failed: {error}")
            return []
        return [name for name in proc.stdout if name and name.startswith(prefix)]

    def has_session(self, session_name: str) -> bool:
        proc = self.server.cmd("has-session", "-t", f"={session_name}")
        return not proc.stderr and not getattr(proc, "returncode", 0)

    def capture(self, session_name: str, lines: int = 200) -> str:
        """Capture the visible pane plus ``lines`` of scrollback as plain text.

        Args:
            session_name: tmux session to capture.
            lines: Scrollback lines to include.

        Raises:
            SessionActionError: If the session does not exist.
        """
        out = self._cmd(
            session_name, "capture-pane", "-p", "-J", "-t", session_name, "-S", f"-{lines}"
        )
        return "\n".join(out)

    def send_text(self, session_name: str, text: str, submit: bool = True) -> None:
        """Type ``text`` literally into the session, then press Enter.

        Raises:
            SessionActionError: If the session is gone or tmux fails.
        """
        self._cmd(session_name, "send-keys", "-t", session_name, "-l", "--", text)
        if submit:
            self._cmd(session_name, "send-keys", "-t", session_name, "Enter")
        logger.info(f"[{session_name}] sent text ({len(text)} chars)")

    def send_keys(self, session_name: str, keys: str | list[str]) -> None:
        """Send tmux key names (``'C-c'``, ``'Enter Escape'``) without submitting.

        Raises:
            SessionActionError: If no key is given or tmux fails.
        """
        names = keys.split() if isinstance(keys, str) else list(keys)
        if not names:
            raise SessionActionError(session_name, "no keys to send")
        self._cmd(session_name, "send-keys", "-t", session_name, *names)
        logger.info(f"[{session_name}] sent keys {' '.join(names)}")

    def run_command(self, session_name: str, args: list[str]) -> str:
        """Run an arbitrary tmux sub-command (no shell involved).

        Args:
            session_name: Session the command is run for (used in errors).
            args: tmux argv without the ``tmux`` binary, e.g.
                ``['select-window', '-t', 'agent-x', '-n']``.

        Returns:
            The command's stdout.
        """
        if not args:
            raise SessionActionError(session_name, "empty tmux command")
        out = self._cmd(session_name, *args)
        logger.info(f"[{session_name}] ran tmux {args[0]}")
        return "\n".join(out)
