"""
Detach the server from its terminal.

The classic double fork:

    parent ── fork ──► child ── setsid ── fork ──► grandchild (daemon)
      │                  │
    exit(0)            exit(0)

The grandchild is not a session leader, so it can never reacquire a
controlling terminal. Standard streams point at /dev/null afterwards and
the working directory is "/".

Must run before any thread is started: fork() copies only the calling
thread.
"""

import os
import logging


logger = logging.getLogger(__name__)


def daemonize() -> None:
    """Fork into the background. Returns only in the daemon process."""
    if os.fork() > 0:
        os._exit(0)

    os.setsid()

    if os.fork() > 0:
        os._exit(0)

    os.chdir("/")

    devnull = os.open(os.devnull, os.O_RDWR)
    for fd in (0, 1, 2):
        os.dup2(devnull, fd)
    if devnull > 2:
        os.close(devnull)

    logger.info(f"Running as daemon, pid {os.getpid()}")
