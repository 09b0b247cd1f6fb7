from __future__ import annotations

import contextlib
import errno
import json
import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar, Union

from taskgraph_platform.core.errors import FileOperationError, ValidationError


logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]
T = TypeVar("T")

DEFAULT_BACKUP_COUNT = 5
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 0.05
BACKUP_MARKER = ".bak."

_TRANSIENT_ERRNOS = {errno.EBUSY, errno.EAGAIN, errno.ETXTBSY, errno.EINTR}
if os.name == "nt":
    # antivirus and indexers hold files open briefly on Windows
    _TRANSIENT_ERRNOS |= {errno.EACCES, errno.EPERM}


def is_transient(exc: OSError) -> bool:
    return exc.errno in _TRANSIENT_ERRNOS


class AtomicFileWriter:
    """Crash-safe writes of a single document.

    The target is always either its previous complete content or its new
    complete content. The write strategy is:
    1. write + flush + fsync a temp file in the target's directory,
    2. copy the current target to ``<name>.bak.<ns>`` and rotate old backups,
    3. replace the target with ``os.replace``.

    Transient OS errors on steps 1 and 3 are retried with exponential backoff.
    """

    def __init__(
        self,
        backup_count: int = DEFAULT_BACKUP_COUNT,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.backup_count = backup_count
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

    def write(self, path: PathLike, content: Any, *, create_backup: bool = True) -> Path:
        target = Path(path)
        data = self._serialize(content, target)
        self.ensure_dir(target.parent)

        temp = self._with_retry(lambda: self._write_temp(target, data), "write", target)
        try:
            if create_backup and target.exists():
                self._backup(target)
            self._with_retry(lambda: self._commit(temp, target), "rename", target)
        except Exception:
            with contextlib.suppress(OSError):
                temp.unlink(missing_ok=True)
            raise

        _fsync_directory(target.parent)
        logger.debug("wrote %s (%d bytes)", target, len(data))
        return target

    @staticmethod
    def _serialize(content: Any, target: Path) -> bytes:
        """Text is written as-is; anything else is dumped as JSON. Output is UTF-8."""
        try:
            text = content if isinstance(content, str) else json.dumps(content, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise ValidationError(
                code="E_INVALID_CONTENT",
                message=f"content is not JSON serializable: {e}",
                file=str(target),
            ) from e
        if text == "":
            raise ValidationError(
                code="E_EMPTY_CONTENT",
                message="refusing to write empty content",
                file=str(target),
            )
        try:
            return text.encode("utf-8")
        except UnicodeEncodeError as e:
            raise ValidationError(
                code="E_INVALID_CONTENT",
                message=f"content is not valid UTF-8 text: {e.reason} at position {e.start}",
                file=str(target),
            ) from e

    def _write_temp(self, target: Path, data: bytes) -> Path:
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{target.name}.",
            suffix=".tmp",
            dir=str(target.parent),
        )
        temp = Path(temp_name)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            size = temp.stat().st_size
        except Exception:
            with contextlib.suppress(OSError):
                temp.unlink(missing_ok=True)
            raise

        if size != len(data):
            with contextlib.suppress(OSError):
                temp.unlink(missing_ok=True)
            raise FileOperationError(
                code="E_FILE_SIZE_MISMATCH",
                message=f"temp file has {size} bytes, expected {len(data)}",
                file=str(target),
            )
        return temp

    @staticmethod
    def _commit(temp: Path, target: Path) -> None:
        try:
            os.replace(temp, target)
        except PermissionError:
            if os.name != "nt":
                raise
            # replace is not reliable on Windows when the target is open elsewhere
            shutil.copyfile(temp, target)
            temp.unlink(missing_ok=True)

    def _with_retry(self, fn: Callable[[], T], op: str, target: Path) -> T:
        last: Optional[OSError] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn()
            except OSError as e:
                if not is_transient(e):
                    raise FileOperationError(
                        code="E_FILE_WRITE" if op == "write" else "E_FILE_RENAME",
                        message=f"{op} failed: {e}",
                        file=str(target),
                        attempts=attempt,
                    ) from e
                last = e
                if attempt < self.max_attempts:
                    delay = self.base_delay * (2 ** (attempt - 1))
                    logger.warning(
                        "%s of %s failed (%s), retrying in %.3fs (attempt %d/%d)",
                        op,
                        target,
                        e,
                        delay,
                        attempt,
                        self.max_attempts,
                    )
                    self._sleep(delay)
        raise FileOperationError(
            code="E_FILE_RETRY_EXHAUSTED",
            message=f"{op} failed after {self.max_attempts} attempts: {last}",
            file=str(target),
            attempts=self.max_attempts,
        ) from last

    # -- backups --------------------------------------------------------

    def _backup(self, target: Path) -> Path:
        stamp = time.time_ns()
        backup = backup_path(target, stamp)
        while backup.exists():
            stamp += 1
            backup = backup_path(target, stamp)
        try:
            shutil.copy2(target, backup)
        except OSError as e:
            raise FileOperationError(
                code="E_FILE_BACKUP",
                message=f"could not back up: {e}",
                file=str(target),
            ) from e
        logger.debug("backed up %s to %s", target, backup.name)
        self._rotate(target)
        return backup

    def _rotate(self, target: Path) -> None:
        for old in self.list_backups(target)[self.backup_count :]:
            with contextlib.suppress(FileNotFoundError):
                old.unlink()
            logger.debug("removed old backup %s", old.name)

    @staticmethod
    def list_backups(path: PathLike) -> list[Path]:
        """Backups of ``path``, newest first."""
        target = Path(path)
        if not target.parent.is_dir():
            return []
        found: list[tuple[int, Path]] = []
        prefix = target.name + BACKUP_MARKER
        for p in target.parent.iterdir():
            stamp = p.name[len(prefix) :]
            if p.name.startswith(prefix) and stamp.isdigit():
                found.append((int(stamp), p))
        return [p for _, p in sorted(found, reverse=True)]

    # -- plain file primitives ------------------------------------------

    @staticmethod
    def read(path: PathLike) -> str:
        p = Path(path)
        try:
            return p.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise FileOperationError(code="E_FILE_NOT_FOUND", message="file does not exist", file=str(p)) from e
        except OSError as e:
            raise FileOperationError(code="E_FILE_READ", message=str(e), file=str(p)) from e

    def read_json(self, path: PathLike) -> Any:
        text = self.read(path)
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise FileOperationError(code="E_JSON_PARSE", message=str(e), file=str(path)) from e

    @staticmethod
    def exists(path: PathLike) -> bool:
        return Path(path).exists()

    @staticmethod
    def delete(path: PathLike) -> bool:
        """Remove a file. Returns False when it was already gone."""
        p = Path(path)
        try:
            p.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise FileOperationError(code="E_FILE_DELETE", message=str(e), file=str(p)) from e
        return True

    @staticmethod
    def ensure_dir(path: PathLike) -> Path:
        p = Path(path)
        try:
            p.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileOperationError(code="E_FILE_MKDIR", message=str(e), file=str(p)) from e
        return p


def backup_path(target: Path, stamp: int) -> Path:
    return target.with_name(f"{target.name}{BACKUP_MARKER}{stamp:020d}")


def _fsync_directory(path: Path) -> None:
    """Best-effort directory fsync so the rename itself is durable."""
    if os.name == "nt":
        return

    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY

    try:
        dir_fd = os.open(path, flags)
    except OSError:
        return

    try:
        os.fsync(dir_fd)
    except OSError:
        return
    finally:
        os.close(dir_fd)
