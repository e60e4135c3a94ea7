"""
Advisory lock-file so only one exporter runs at a time.

The lock file holds the holder's pid. A lock whose pid is no longer alive is stale and gets reclaimed.
Release happens on context-exit, at interpreter exit, and on SIGTERM/SIGINT (converted to SystemExit).
"""

import atexit
import logging
import os
import signal
from pathlib import Path
from types import FrameType

from exporter_errors import LockHeld

log = logging.getLogger(__name__)

LOCK_FILE: Path = Path('/tmp/media-library-exporter.lock')


def pid_is_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        ## exists, but owned by someone else
        return True
    return True


def _exit_on_signal(signum: int, _frame: FrameType | None) -> None:
    raise SystemExit(128 + signum)


class InstanceLock:
    def __init__(self, path: Path = LOCK_FILE, *, handle_signals: bool = True) -> None:
        self.path: Path = path
        self.handle_signals: bool = handle_signals
        self.held: bool = False
        self._previous_handlers: dict[int, object] = {}

    def read_holder_pid(self) -> int | None:
        try:
            content: str = self.path.read_text(encoding='utf-8').strip()
        except FileNotFoundError:
            return None
        try:
            return int(content)
        except ValueError:
            return None

    def acquire(self) -> None:
        """
        Raises LockHeld if a live process holds the lock; otherwise (re)writes it with our pid.
        """
        if self.path.exists():
            holder: int | None = self.read_holder_pid()
            if holder is not None and holder != os.getpid() and pid_is_alive(holder):
                raise LockHeld(f'Another instance is running with PID {holder}')
            log.warning('Stale lock file found. Removing...')
            self.path.unlink(missing_ok=True)
        self.path.write_text(f'{os.getpid()}\n', encoding='utf-8')
        self.held = True
        atexit.register(self.release)
        if self.handle_signals:
            for signum in (signal.SIGTERM, signal.SIGINT):
                self._previous_handlers[signum] = signal.signal(signum, _exit_on_signal)
        log.debug(f'acquired lock ``{self.path}``')

    def release(self) -> None:
        """
        Removes the lock file if we still hold it. Safe to call more than once.
        """
        if not self.held:
            return
        if self.read_holder_pid() == os.getpid():
            self.path.unlink(missing_ok=True)
        self.held = False
        atexit.unregister(self.release)
        for signum, handler in self._previous_handlers.items():
            if handler is not None:
                signal.signal(signum, handler)  # type: ignore[arg-type]
        self._previous_handlers = {}

    def __enter__(self) -> 'InstanceLock':
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
