"""
Archive interpreters.

Two ways to turn a staged archive into plaintext inside a workspace:
NativeExtractor decodes in-process, SubprocessExtractor runs the
archive's own bootstrap preamble under ``/bin/sh``.
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Optional, Protocol

from secureviewer.core.errors import (
    DecryptionFailedError,
    EmptyPayloadError,
    MalformedArchiveError,
    WrongPasswordOrCorruptError,
)
from secureviewer.core.file_ops.archive import (
    EXIT_EMPTY_PAYLOAD,
    EXIT_MALFORMED,
    EXIT_OK,
    EXIT_WRONG_PASSWORD,
    ArchiveCodec,
)


DEFAULT_TIMEOUT_SECONDS: Final[float] = 60.0
SHELL: Final[str] = "/bin/sh"

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    """What an interpreter run produced."""

    returncode: int
    output: str
    written: Optional[Path] = None


class Extractor(Protocol):
    def run(self, archive: Path, password: str, workdir: Path) -> ExtractionResult:
        ...


class NativeExtractor:
    """Decode the staged archive with the in-process codec."""

    __slots__ = ("_codec",)

    def __init__(self, codec: Optional[ArchiveCodec] = None) -> None:
        self._codec = codec if codec is not None else ArchiveCodec()

    def run(self, archive: Path, password: str, workdir: Path) -> ExtractionResult:
        written = self._codec.extract(archive, password, output_dir=workdir)
        return ExtractionResult(EXIT_OK, f"Decrypted: {written}", written)


_EXIT_ERRORS: Final[dict[int, type[Exception]]] = {
    EXIT_MALFORMED: MalformedArchiveError,
    EXIT_WRONG_PASSWORD: WrongPasswordOrCorruptError,
    EXIT_EMPTY_PAYLOAD: EmptyPayloadError,
}


class SubprocessExtractor:
    """
    Execute the archive as a program and let it decrypt itself.

    The password goes to the child's stdin followed by a newline; stdout
    and stderr are captured together. A child that outlives the timeout
    is killed.

    Exit status mapping:
        0 success, 2 malformed, 3 wrong password or corrupt,
        4 empty payload, anything else DecryptionFailedError
    """

    __slots__ = ("_timeout", "_python")

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        python: Optional[str] = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._timeout = timeout
        self._python = python or sys.executable

    @property
    def timeout(self) -> float:
        return self._timeout

    def run(self, archive: Path, password: str, workdir: Path) -> ExtractionResult:
        env = dict(os.environ)
        env["SECUREVIEWER_PYTHON"] = self._python

        try:
            completed = subprocess.run(
                [SHELL, str(archive)],
                cwd=workdir,
                input=(password + "\n").encode("utf-8"),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=env,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as e:
            # subprocess.run kills the child before re-raising
            output = (e.output or b"").decode("utf-8", errors="replace")
            logger.warning("Self-extraction of %s timed out after %.1fs", archive.name, self._timeout)
            raise DecryptionFailedError("Decryption timed out.", output=output) from e
        except OSError as e:
            raise DecryptionFailedError(f"Could not run archive: {e.strerror}") from e

        output = completed.stdout.decode("utf-8", errors="replace")

        if completed.returncode == EXIT_OK:
            return ExtractionResult(completed.returncode, output)

        logger.info("Self-extraction of %s exited with %d", archive.name, completed.returncode)
        error_cls = _EXIT_ERRORS.get(completed.returncode)
        if error_cls is not None:
            error = error_cls()
            error.output = output
            raise error
        raise DecryptionFailedError(output=output)
