"""
Cooperative cancellation for streaming model calls.

A ``CancellationToken`` is created per streaming call and checked by the
engine at every chunk boundary. The only external trigger is the
``EscapeListener``, which watches stdin for the ESC key while the model is
streaming on an interactive terminal.

Cancellation is advisory: tool subprocesses already running are not
killed, the engine only stops consuming model output.
"""

import asyncio
import os
import sys
from typing import Callable

import structlog

logger = structlog.get_logger()

_ESC = b"\x1b"


class CancellationToken:
    """One-shot cancellation signal with a notify-once guard.

    ``cancel()`` may be called any number of times; ``on_cancel``
    callbacks run on the first call only.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._notified = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def on_cancel(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def cancel(self) -> None:
        self._cancelled = True
        self.notify_once()

    def notify_once(self) -> None:
        """Run the cancel callbacks unless they already ran."""
        if self._notified:
            return
        self._notified = True
        for callback in self._callbacks:
            callback()

    def __repr__(self) -> str:
        return f"<CancellationToken(cancelled={self._cancelled})>"


class EscapeListener:
    """Cancels a token when ESC is pressed on the controlling terminal.

    The terminal is switched to cbreak mode and stdin is watched with
    ``loop.add_reader``. ``suspend()`` restores the terminal while a tool
    needs stdin (e.g. the override prompt); ``resume()`` re-attaches.
    """

    def __init__(self, token: CancellationToken) -> None:
        self.token = token
        self.log = logger.bind(component="escape_listener")
        self._fd: int | None = None
        self._saved_attrs: list | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False

    @staticmethod
    def available() -> bool:
        return os.name == "posix" and sys.stdin.isatty()

    @property
    def active(self) -> bool:
        return self._fd is not None

    def start(self) -> None:
        if self._closed or self.active or not self.available():
            return

        import termios
        import tty

        fd = sys.stdin.fileno()
        self._loop = asyncio.get_running_loop()
        self._saved_attrs = termios.tcgetattr(fd)
        tty.setcbreak(fd)
        self._loop.add_reader(fd, self._on_stdin_ready)
        self._fd = fd
        self.log.debug("escape_listener.started")

    def stop(self) -> None:
        """Detach for good; later resume() calls are ignored."""
        self._closed = True
        self._detach()

    def suspend(self) -> None:
        self._detach()

    def resume(self) -> None:
        if not self.token.cancelled:
            self.start()

    def _detach(self) -> None:
        if not self.active:
            return

        import termios

        fd = self._fd
        self._fd = None
        try:
            self._loop.remove_reader(fd)
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, self._saved_attrs)
        self.log.debug("escape_listener.detached")

    def _on_stdin_ready(self) -> None:
        try:
            ch = os.read(self._fd, 1)
        except OSError:
            ch = b""
        if ch == _ESC:
            self.log.info("escape_listener.escape_pressed")
            self.token.cancel()


ListenerFactory = Callable[[CancellationToken], EscapeListener | None]


def escape_listener_factory(enabled: bool) -> ListenerFactory:
    """Listener factory for the engine; yields None when ESC is disabled."""

    def factory(token: CancellationToken) -> EscapeListener | None:
        if not enabled or not EscapeListener.available():
            return None
        return EscapeListener(token)

    return factory
