"""
Single-instance guard for the API server.

A JSON lock file next to the backend records which process owns the
deployment ({"pid", "timestamp", "port"}). A record is only honoured while
its pid is alive, so a crashed server never blocks the next start.
"""
from __future__ import annotations

import errno
import json
import logging
import os
import signal
import socket
import subprocess
import time
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from errors import PortBindError
from helpers import _iso_now

logger = logging.getLogger(__name__)

MAX_PORT = 65535


@dataclass
class LockRecord:
    pid: int
    timestamp: str
    port: Optional[int] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        if self.port is None:
            data.pop("port")
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "LockRecord":
        pid = data.get("pid")
        # bool is an int subclass; a lock file never legitimately holds one
        if not isinstance(pid, int) or isinstance(pid, bool):
            raise ValueError(f"lock record has no valid pid: {data!r}")
        port = data.get("port")
        return cls(
            pid=pid,
            timestamp=str(data.get("timestamp") or ""),
            port=port if isinstance(port, int) and not isinstance(port, bool) else None,
        )


def is_process_alive(pid: int) -> bool:
    """Existence probe via signal 0. EPERM means the process exists but is not ours."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class InstanceGuard:
    """
    Owns the lock file for one deployment directory.

    Args:
        lock_path: where the lock record lives
        pid: process id written into the record (defaults to ours)
        is_alive: liveness probe, swapped out in tests
    """

    def __init__(
        self,
        lock_path,
        pid: Optional[int] = None,
        is_alive: Callable[[int], bool] = is_process_alive,
    ):
        self.lock_path = Path(lock_path)
        self.pid = pid if pid is not None else os.getpid()
        self._is_alive = is_alive

    def read(self) -> Optional[LockRecord]:
        """
        Current lock record, or None when the file is absent or unusable.

        Read/parse problems are logged and reported as "no valid lock".
        """
        try:
            raw = self.lock_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error("Could not read lock file %s: %s", self.lock_path, e)
            return None
        try:
            return LockRecord.from_dict(json.loads(raw))
        except (ValueError, TypeError, AttributeError) as e:
            logger.error("Ignoring unreadable lock file %s: %s", self.lock_path, e)
            return None

    def acquire(self) -> bool:
        """
        Take ownership of the lock file.

        Returns False when a live process other than us holds it; the file
        is left untouched in that case. Stale or corrupt records are removed
        and replaced by ours.
        """
        if self.lock_path.exists():
            record = self.read()
            if record is not None and record.pid != self.pid and self._is_alive(record.pid):
                logger.warning(
                    "Server lock %s is held by running process %s. "
                    "If this is incorrect, delete the lock file and restart.",
                    self.lock_path, record.pid,
                )
                return False
            if record is None:
                logger.info("Reclaiming invalid lock file %s", self.lock_path)
            elif record.pid != self.pid:
                logger.info("Stale lock file found, previous process %s is not running", record.pid)
            self._remove()
        return self._create(LockRecord(pid=self.pid, timestamp=_iso_now()))

    def release(self) -> bool:
        """Delete the lock file if, and only if, we own it."""
        record = self.read()
        if record is None or record.pid != self.pid:
            return False
        if self._remove():
            logger.info("Server lock file released")
            return True
        return False

    def owns_lock(self) -> bool:
        record = self.read()
        return record is not None and record.pid == self.pid

    def record_port(self, port: int) -> bool:
        """Rewrite our record with the port the server actually bound."""
        record = self.read()
        if record is None or record.pid != self.pid:
            logger.warning("Not updating lock file with port %s: lock is not ours", port)
            return False
        record.port = port
        try:
            self.lock_path.write_text(json.dumps(record.to_dict(), indent=2), encoding="utf-8")
        except OSError as e:
            logger.warning("Could not update server lock file: %s", e)
            return False
        return True

    def _create(self, record: LockRecord) -> bool:
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            # "x" so a second process racing us through the stale check loses cleanly
            with open(self.lock_path, "x", encoding="utf-8") as fh:
                json.dump(record.to_dict(), fh)
        except FileExistsError:
            logger.warning("Lock file %s was created by another process", self.lock_path)
            return False
        except OSError as e:
            logger.error("Error writing server lock file %s: %s", self.lock_path, e)
            return False
        return True

    def _remove(self) -> bool:
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error("Error removing server lock file %s: %s", self.lock_path, e)
            return False
        return True


# ------------------------------
# Ports
# ------------------------------
def port_is_free(port: int, host: str = "") -> bool:
    """Try to bind `port`; SO_REUSEADDR matches what the WSGI server does."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError as e:
        if e.errno not in (errno.EADDRINUSE, errno.EACCES):
            logger.debug("Probe of port %s failed: %s", port, e)
        return False
    finally:
        sock.close()
    return True


def find_available_port(
    start_port: int,
    max_attempts: int = 20,
    is_free: Callable[[int], bool] = port_is_free,
) -> int:
    """First free port in [start_port, start_port + max_attempts)."""
    last = min(start_port + max_attempts, MAX_PORT + 1)
    for port in range(start_port, last):
        if is_free(port):
            return port
        logger.info("Port %s is in use, trying %s", port, port + 1)
    raise PortBindError(f"No free port in range {start_port}-{last - 1}")


def _listening_pids(port: int) -> List[int]:
    try:
        out = subprocess.run(
            ["lsof", "-t", "-i", f"tcp:{port}", "-s", "TCP:LISTEN"],
            capture_output=True, text=True, timeout=5, check=False,
        )
    except FileNotFoundError:
        logger.warning("lsof is not installed; cannot look up processes on port %s", port)
        return []
    except subprocess.TimeoutExpired:
        logger.warning("lsof timed out looking up port %s", port)
        return []
    return [int(tok) for tok in out.stdout.split() if tok.strip().isdigit()]


def kill_port_occupants(
    ports: Iterable[int],
    find_pids: Callable[[int], List[int]] = _listening_pids,
    is_alive: Callable[[int], bool] = is_process_alive,
    wait_seconds: float = 3.0,
) -> List[int]:
    """
    Terminate the processes listening on `ports` (never ourselves).

    Returns the pids that were signalled. Errors are logged, not raised.
    """
    own = os.getpid()
    killed: List[int] = []
    for port in ports:
        for pid in find_pids(port):
            if pid == own or pid in killed:
                continue
            try:
                os.kill(pid, signal.SIGKILL)
                killed.append(pid)
                logger.warning("Killed process %s listening on port %s", pid, port)
            except ProcessLookupError:
                pass
            except PermissionError as e:
                logger.error("Not allowed to kill process %s on port %s: %s", pid, port, e)

    deadline = time.monotonic() + wait_seconds
    while killed and time.monotonic() < deadline:
        if not any(is_alive(pid) for pid in killed):
            break
        time.sleep(0.1)
    return killed
