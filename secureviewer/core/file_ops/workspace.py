"""
Ephemeral Workspace Module
==========================

Owner-only scratch directories that hold decrypted plaintext for exactly
one view/edit cycle.

Lifecycle:
    create() -> stage() -> [interpreter writes plaintext] -> track()
    -> secure_delete() on completion, expiry, or process teardown

Security Properties:
- Random ``secview_<12 chars>`` names, mode 0700
- At most one live workspace; create() tears the previous one down
- Auto-expiry wipes the workspace after a fixed delay
- atexit and signal hooks wipe on shutdown
"""

from __future__ import annotations

import atexit
import logging
import os
import shutil
import signal
import stat
import sys
import tempfile
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Final, Optional

from secureviewer.core.errors import IOFailureError, PermissionDeniedError
from secureviewer.core.file_ops.secure_delete import (
    SecureDeleteError,
    WipeReport,
    secure_delete_directory,
)
from secureviewer.utils.paths import create_private_directory, is_path_within_directory


WORKSPACE_PREFIX: Final[str] = "secview_"
DEFAULT_EXPIRY_SECONDS: Final[float] = 600.0

logger = logging.getLogger(__name__)


@dataclass
class Workspace:
    """A live workspace directory and the files placed into it."""

    path: Path
    created_at: float = field(default_factory=time.time)
    files: set[Path] = field(default_factory=set)
    staged_archive: Optional[Path] = None
    source_archive: Optional[Path] = None

    def track(self, path: Path) -> Path:
        self.files.add(Path(path))
        return Path(path)

    def contains(self, path: Path | str) -> bool:
        return is_path_within_directory(Path(path), self.path)

    def recent_files(self, since: float, exclude_extension: str) -> list[Path]:
        """
        Regular files directly inside the workspace modified at or after ``since``.

        The staged archive and anything carrying the archive extension are
        never candidates.
        """
        candidates = []
        with os.scandir(self.path) as entries:
            for entry in entries:
                if not entry.is_file(follow_symlinks=False):
                    continue
                candidate = Path(entry.path)
                if self.staged_archive is not None and candidate == self.staged_archive:
                    continue
                if entry.name.lower().endswith(exclude_extension.lower()):
                    continue
                if entry.stat(follow_symlinks=False).st_mtime >= since:
                    candidates.append(candidate)
        return sorted(candidates)


class ExpiryTimer:
    """
    Single-shot deadline that runs an action once per arming.

    Each arm() or cancel() bumps a generation counter under a lock; a
    firing thread only runs the action if its generation is still the
    current one. The action receives that generation, the same token
    arm() returned, so the owner can reject a firing that lost a race
    with a later arm() after the timer lock was released.

    Usage:
        timer = ExpiryTimer(600, on_expired)   # on_expired(token)
        token = timer.arm()    # after a successful decrypt
        timer.arm()            # re-arming restarts the countdown
        timer.cancel()
    """

    __slots__ = ("_timeout", "_action", "_lock", "_timer", "_generation", "_deadline")

    def __init__(self, timeout_seconds: float, action: Callable[[int], Any]) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._timeout = timeout_seconds
        self._action = action
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._deadline: Optional[float] = None

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def armed(self) -> bool:
        with self._lock:
            return self._deadline is not None

    def arm(self) -> int:
        """Start, or restart, the countdown. Returns the arming token."""
        with self._lock:
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
            self._deadline = time.monotonic() + self._timeout
            self._timer = threading.Timer(self._timeout, self._fire, args=(self._generation,))
            self._timer.daemon = True
            self._timer.start()
            return self._generation

    def cancel(self) -> None:
        with self._lock:
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._deadline = None

    def time_remaining(self) -> Optional[float]:
        """Seconds until expiry, or None when not armed."""
        with self._lock:
            if self._deadline is None:
                return None
            return max(0.0, self._deadline - time.monotonic())

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._generation += 1
            self._timer = None
            self._deadline = None
        self._action(generation)


class WorkspaceManager:
    """
    Creates, tracks and destroys ephemeral workspaces.

    All public methods serialize on one re-entrant lock, so the expiry
    thread and the caller never tear down the same workspace twice.

    Usage:
        manager = WorkspaceManager(temp_root=Path("/tmp"))
        ws = manager.create()
        staged = manager.stage(ws, Path("report.txt.senc"))
        ...
        report = manager.secure_delete()
    """

    def __init__(
        self,
        temp_root: Optional[Path | str] = None,
        expiry_seconds: float = DEFAULT_EXPIRY_SECONDS,
        wipe_passes: int = 1,
        register_atexit: bool = True,
    ) -> None:
        self._temp_root = Path(temp_root) if temp_root is not None else Path(tempfile.gettempdir())
        self._wipe_passes = wipe_passes
        self._lock = threading.RLock()
        self._workspaces: list[Workspace] = []
        self._expired_callbacks: list[Callable[[WipeReport], None]] = []
        self._timer = ExpiryTimer(expiry_seconds, self._on_expired)
        self._armed_token: Optional[int] = None
        self._atexit_registered = register_atexit

        if register_atexit:
            atexit.register(self.shutdown)

    @property
    def temp_root(self) -> Path:
        return self._temp_root

    @property
    def live_workspace(self) -> Optional[Workspace]:
        with self._lock:
            return self._workspaces[-1] if self._workspaces else None

    @property
    def expiry_seconds(self) -> float:
        return self._timer.timeout

    @property
    def wipe_passes(self) -> int:
        return self._wipe_passes

    @property
    def lock(self):
        """Re-entrant lock held while workspaces are created, staged or wiped."""
        return self._lock

    def create(self) -> Workspace:
        """
        Allocate a fresh workspace, tearing down any live one first.

        Raises:
            PermissionDeniedError: The temp root is not writable
            IOFailureError: Any other filesystem failure
        """
        with self._lock:
            if self._workspaces:
                self.secure_delete()

            try:
                self._temp_root.mkdir(parents=True, exist_ok=True)
                path = create_private_directory(self._temp_root, WORKSPACE_PREFIX)
            except PermissionError as e:
                raise PermissionDeniedError(
                    f"Cannot create workspace under {self._temp_root}"
                ) from e
            except OSError as e:
                raise IOFailureError(f"Cannot create workspace: {e}") from e

            workspace = Workspace(path=path)
            self._workspaces.append(workspace)
            logger.debug("Created workspace %s", path)
            return workspace

    def stage(self, workspace: Workspace, source: Path | str) -> Path:
        """
        Copy an archive into the workspace and make it owner-executable.

        Returns:
            Path of the staged copy
        """
        source = Path(source)
        target = workspace.path / source.name

        with self._lock:
            try:
                shutil.copyfile(source, target)
                target.chmod(stat.S_IRWXU)
            except PermissionError as e:
                raise PermissionDeniedError(f"Cannot stage {source}") from e
            except OSError as e:
                raise IOFailureError(f"Cannot stage {source}: {e}") from e

            workspace.track(target)
            workspace.staged_archive = target
            workspace.source_archive = source.resolve()
            return target

    def secure_delete(self) -> WipeReport:
        """
        Wipe and remove every tracked workspace and stop the expiry timer.

        A file that cannot be wiped is logged and reported; the remaining
        files and workspaces are still processed.
        """
        with self._lock:
            self._timer.cancel()
            self._armed_token = None
            report = WipeReport()

            while self._workspaces:
                workspace = self._workspaces.pop(0)
                try:
                    report.merge(
                        secure_delete_directory(workspace.path, passes=self._wipe_passes)
                    )
                except SecureDeleteError as e:
                    logger.warning("Could not wipe workspace %s: %s", workspace.path, e)
                    report.failures.append((workspace.path, str(e)))

            if report.files_wiped or report.failures:
                logger.info(
                    "Workspace wiped: %d files, %d failures",
                    report.files_wiped,
                    len(report.failures),
                )
            return report

    def arm_expiry(self) -> None:
        """(Re)start the auto-expiry countdown for the live workspace."""
        with self._lock:
            self._armed_token = self._timer.arm()

    def cancel_expiry(self) -> None:
        with self._lock:
            self._timer.cancel()
            self._armed_token = None

    def time_remaining(self) -> Optional[float]:
        return self._timer.time_remaining()

    def on_expired(self, callback: Callable[[WipeReport], None]) -> None:
        """Register a callback run after an expiry wipe."""
        with self._lock:
            self._expired_callbacks.append(callback)

    def _on_expired(self, token: int) -> None:
        with self._lock:
            # Torn down or re-armed since this firing passed the timer check
            if token != self._armed_token or not self._workspaces:
                return
            logger.info("Workspace expired, wiping")
            report = self.secure_delete()
            callbacks = list(self._expired_callbacks)

        for callback in callbacks:
            try:
                callback(report)
            except Exception:
                logger.exception("Workspace expiry callback failed")

    def shutdown(self) -> WipeReport:
        """Stop the timer and wipe everything. Safe to call more than once."""
        report = self.secure_delete()
        if self._atexit_registered:
            atexit.unregister(self.shutdown)
            self._atexit_registered = False
        return report

    def install_signal_handlers(self) -> None:
        """
        Wipe workspaces and exit on SIGTERM, SIGINT and (Unix) SIGHUP.

        Only possible from the main thread.
        """
        def wipe_signal_handler(signum: int, frame: Any) -> None:
            logger.warning("Received signal %d, wiping workspaces", signum)
            self.shutdown()
            sys.exit(1)

        signals = [signal.SIGTERM, signal.SIGINT]
        if hasattr(signal, "SIGHUP"):
            signals.append(signal.SIGHUP)

        try:
            for signum in signals:
                signal.signal(signum, wipe_signal_handler)
        except ValueError as e:
            logger.warning("Signal handlers not installed: %s", e)
