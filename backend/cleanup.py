#!/usr/bin/env python3
"""
Development cleanup: remove the server lock file and free the dev ports.

Usage:
    interviewace-cleanup                 # lock file + ports 3000-3010
    interviewace-cleanup --ports 3001 3002
    interviewace-cleanup --keep-lock
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from config import BaseConfig
from instance_guard import InstanceGuard, kill_port_occupants

logger = logging.getLogger(__name__)

DEFAULT_PORTS = list(range(3000, 3011))
DEFAULT_LOCK_FILE = Path(BaseConfig.LOCK_FILE)


def remove_lock_file(lock_path: Path) -> bool:
    """Delete the lock file whoever owns it. Returns True if a file was removed."""
    record = InstanceGuard(lock_path).read()
    if not lock_path.exists():
        logger.info("No lock file found")
        return False
    if record is not None:
        logger.info("Found lock file for process %s on port %s", record.pid, record.port)
    try:
        lock_path.unlink()
    except OSError as e:
        logger.error("Error removing lock file: %s", e)
        return False
    logger.info("Lock file removed")
    return True


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Remove the InterviewAce server lock file and kill processes on dev ports"
    )
    parser.add_argument(
        "--lock-file",
        type=Path,
        default=DEFAULT_LOCK_FILE,
        help=f"Lock file to remove (default: {DEFAULT_LOCK_FILE})",
    )
    parser.add_argument(
        "--ports",
        type=int,
        nargs="+",
        default=DEFAULT_PORTS,
        help="Ports whose listeners get killed (default: 3000-3010)",
    )
    parser.add_argument(
        "--keep-lock",
        action="store_true",
        help="Only free the ports, leave the lock file alone",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    logger.info("Starting cleanup")

    if not args.keep_lock:
        remove_lock_file(args.lock_file)

    killed = kill_port_occupants(args.ports)
    logger.info("Port cleanup completed (%d process(es) killed)", len(killed))
    logger.info("You can now start the development server with: interviewace-server")
    return 0


if __name__ == "__main__":
    sys.exit(main())
