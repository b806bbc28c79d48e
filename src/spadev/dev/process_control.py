"""Tracking and stopping the dev server process tree.

Design goals:
- Only stop processes we started (tracked by pid + create_time).
- Prefer graceful shutdown (SIGINT first), escalate deterministically.
- Work on POSIX + Windows (best-effort graceful on Windows).

These helpers block; call them through `asyncio.to_thread` from async code.
"""

from __future__ import annotations

import os
import signal
import time

import psutil

from spadev.dev.logging import DevLogComponent, get_logger
from spadev.models import TrackedProcess

logger = get_logger(DevLogComponent.PROCESS_CONTROL)


def _get_pgid_safe(pid: int) -> int | None:
    # Windows doesn't have pgid.
    if os.name == "nt":
        return None
    try:
        return os.getpgid(pid)
    except OSError:
        return None


def track_process(pid: int) -> TrackedProcess | None:
    """Create a TrackedProcess for a running PID, recording create_time and pgid."""
    try:
        proc = psutil.Process(pid)
        return TrackedProcess(
            pid=pid,
            create_time=float(proc.create_time()),
            pgid=_get_pgid_safe(pid),
        )
    except psutil.Error:
        return None


def validate_tracked(tp: TrackedProcess) -> psutil.Process | None:
    """Return a psutil.Process only if PID matches create_time (prevents PID reuse bugs)."""
    if tp.pid is None or tp.create_time is None:
        return None
    try:
        proc = psutil.Process(tp.pid)
        if abs(float(proc.create_time()) - float(tp.create_time)) > 0.001:
            return None
        return proc
    except psutil.Error:
        return None


def _list_pgid_members(pgid: int) -> list[int]:
    """Return PIDs in a process group (POSIX only)."""
    pids: list[int] = []
    for proc in psutil.process_iter(["pid", "status"]):
        # Zombies are gone for our purposes, they only wait to be reaped.
        if proc.info.get("status") == psutil.STATUS_ZOMBIE:
            continue
        if _get_pgid_safe(int(proc.pid)) == pgid:
            pids.append(int(proc.pid))
    return pids


def _wait_for_pgid_empty(pgid: int, timeout: float, poll: float = 0.1) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if not _list_pgid_members(pgid):
            return True
        time.sleep(poll)
    return not _list_pgid_members(pgid)


def _terminate_tree(root: psutil.Process, timeout: float) -> None:
    """Terminate a process tree, children first, killing whatever survives."""
    try:
        children = root.children(recursive=True)
    except psutil.Error:
        children = []

    for p in [*children, root]:
        try:
            p.terminate()
        except psutil.Error:
            pass

    _, alive = psutil.wait_procs([*children, root], timeout=timeout)
    if alive:
        for p in alive:
            try:
                p.kill()
            except psutil.Error:
                pass
        psutil.wait_procs(alive, timeout=max(0.5, timeout / 2))


def _signal_group(pgid: int, sig: signal.Signals) -> None:
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        pass
    except OSError as e:
        logger.debug(f"killpg({pgid}, {sig.name}) failed: {e}")


def stop_tracked_process(
    tp: TrackedProcess,
    *,
    name: str,
    sigint_timeout: float = 1.0,
    sigterm_timeout: float = 1.5,
    sigkill_timeout: float = 1.0,
) -> None:
    """Stop a tracked process and its children.

    Behavior:
    - POSIX: signal the process group (SIGINT -> SIGTERM -> SIGKILL).
    - Windows: best-effort CTRL_BREAK_EVENT, then terminate/kill the process tree.
    """
    if os.name == "nt":
        proc = validate_tracked(tp)
        if proc is None or tp.pid is None:
            return
        logger.info(f"Stopping {name} (pid {tp.pid})")
        # CTRL_BREAK_EVENT requires the process to be in its own group.
        try:
            os.kill(tp.pid, signal.CTRL_BREAK_EVENT)  # type: ignore[attr-defined]
        except OSError:
            pass
        time.sleep(0.1)
        _terminate_tree(proc, timeout=sigterm_timeout + sigkill_timeout)
        return

    pgid = tp.pgid or (_get_pgid_safe(tp.pid) if tp.pid is not None else None)
    if pgid is None:
        proc = validate_tracked(tp)
        if proc is not None:
            logger.info(f"Stopping {name} (pid {tp.pid})")
            _terminate_tree(proc, timeout=sigterm_timeout)
        return

    logger.info(f"Stopping {name} (process group {pgid})")
    for sig, timeout in (
        (signal.SIGINT, sigint_timeout),
        (signal.SIGTERM, sigterm_timeout),
        (signal.SIGKILL, sigkill_timeout),
    ):
        _signal_group(pgid, sig)
        if _wait_for_pgid_empty(pgid, timeout):
            break

    # Last resort: if the root is still alive, kill its tree explicitly.
    proc = validate_tracked(tp)
    if proc is None:
        return
    try:
        if proc.status() == psutil.STATUS_ZOMBIE:
            return
    except psutil.Error:
        return
    _terminate_tree(proc, timeout=max(0.2, sigkill_timeout))
