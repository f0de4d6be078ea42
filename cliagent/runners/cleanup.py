"""Best-effort reaping of orphaned backend processes.

Some CLIs refuse to resume a session id that another (orphaned) process still
holds. Before a resume we terminate any such leftovers, matched by command
line. Nothing here ever raises.
"""

from __future__ import annotations

import logging
import os

import psutil

log = logging.getLogger("cli.cleanup")

REAP_GRACE_S = 3.0


def _matches(cmdline: list[str], command: str, needle: str | None) -> bool:
    if not cmdline:
        return False
    command_name = os.path.basename(command)
    if not any(os.path.basename(part) == command_name for part in cmdline[:2]):
        return False
    if needle is None:
        return True
    return any(needle in part for part in cmdline)


def find_processes(command: str, needle: str | None = None) -> list[psutil.Process]:
    own_pid = os.getpid()
    found: list[psutil.Process] = []
    for proc in psutil.process_iter(["pid", "cmdline"]):
        try:
            if proc.info["pid"] == own_pid:
                continue
            if _matches(proc.info.get("cmdline") or [], command, needle):
                found.append(proc)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    return found


def _terminate(procs: list[psutil.Process], grace_s: float) -> int:
    for proc in procs:
        try:
            proc.terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            log.debug(f"Could not terminate pid={proc.pid}: {e}")
    _, alive = psutil.wait_procs(procs, timeout=grace_s)
    for proc in alive:
        try:
            proc.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            log.debug(f"Could not kill pid={proc.pid}: {e}")
    return len(procs)


def reap_session_processes(command: str, session_id: str, *, grace_s: float = REAP_GRACE_S) -> int:
    """Terminate stale processes of ``command`` still holding ``session_id``."""
    if not session_id:
        return 0
    try:
        procs = find_processes(command, session_id)
        if not procs:
            return 0
        log.info(f"Reaping {len(procs)} stale {command} process(es) for session {session_id}")
        return _terminate(procs, grace_s)
    except Exception as e:
        log.debug(f"Stale process cleanup failed for {command}: {e}")
        return 0


def reap_suspended_processes(command: str, *, grace_s: float = REAP_GRACE_S) -> int:
    """Kill stopped (suspended) leftovers of ``command``."""
    try:
        stopped = []
        for proc in find_processes(command):
            try:
                if proc.status() == psutil.STATUS_STOPPED:
                    stopped.append(proc)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        if not stopped:
            return 0
        log.info(f"Reaping {len(stopped)} suspended {command} process(es)")
        for proc in stopped:
            try:
                # A stopped process won't act on SIGTERM until continued.
                proc.resume()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return _terminate(stopped, grace_s)
    except Exception as e:
        log.debug(f"Suspended process cleanup failed for {command}: {e}")
        return 0
