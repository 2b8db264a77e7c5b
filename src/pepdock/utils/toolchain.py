"""Subprocess helpers for the external docking/protonation/minimization tools."""
from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from ..exceptions import ExternalToolFailure, RunCancelled

logger = logging.getLogger(__name__)

POLL_SECONDS = 1.0


class CancelToken:
    """Cooperative cancellation flag shared between a caller and a run."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: Optional[str] = None) -> None:
        if self.cancelled:
            raise RunCancelled("Run cancelled by caller", stage=stage)


@dataclass(frozen=True)
class ToolResult:
    command: List[str]
    returncode: int
    stdout: str
    stderr: str


def need(bin_name: str) -> str:
    """Resolve an executable on PATH (or an explicit path), raising if absent."""
    candidate = Path(bin_name)
    if candidate.is_file():
        return str(candidate)
    p = shutil.which(bin_name)
    if not p:
        raise ExternalToolFailure(f"Required binary not found on PATH: {bin_name}", command=[bin_name])
    return p


def write_command_log(log_path: Path, result: ToolResult) -> None:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    log_path.write_text(
        "CMD: " + " ".join(result.command) + "\nRC: " + str(result.returncode)
        + "\n--- STDOUT ---\n" + result.stdout + "\n--- STDERR ---\n" + result.stderr + "\n"
    )


def run_tool(
    cmd: Sequence[str],
    cwd: Optional[Path] = None,
    log_path: Optional[Path] = None,
    cancel: Optional[CancelToken] = None,
    ok_codes: Sequence[int] = (0,),
    stage: Optional[str] = None,
) -> ToolResult:
    """
    Run *cmd* to completion, raising with full stdout/stderr on failure.

    The call blocks; when a cancel token is given it is polled and the child
    is terminated as soon as the caller cancels.
    """
    cmd = [str(part) for part in cmd]
    logger.debug("Running: %s", " ".join(cmd))
    if cancel is not None:
        cancel.raise_if_cancelled(stage)
    try:
        process = subprocess.Popen(
            cmd,
            cwd=str(cwd) if cwd else None,
            text=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except FileNotFoundError:
        raise ExternalToolFailure(
            f"Command not found: {cmd[0]}. Ensure it's installed and in PATH.",
            command=cmd, stage=stage,
        ) from None

    while True:
        try:
            stdout, stderr = process.communicate(timeout=POLL_SECONDS)
            break
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.cancelled:
                process.terminate()
                try:
                    process.communicate(timeout=10)
                except subprocess.TimeoutExpired:
                    process.kill()
                    process.communicate()
                logger.warning("Cancelled %s", " ".join(cmd))
                raise RunCancelled(f"Cancelled while running {cmd[0]}", stage=stage) from None

    result = ToolResult(command=cmd, returncode=process.returncode, stdout=stdout or "", stderr=stderr or "")
    if log_path:
        write_command_log(log_path, result)
    if result.returncode not in ok_codes:
        raise ExternalToolFailure(
            f"{Path(cmd[0]).name} exited with code {result.returncode}",
            command=cmd, returncode=result.returncode,
            stdout=result.stdout, stderr=result.stderr, stage=stage,
        )
    return result


def require_artifact(path: Path, result: Optional[ToolResult] = None, stage: Optional[str] = None) -> Path:
    """Fail when a tool returned cleanly but its expected output is missing or empty."""
    if not path.exists() or path.stat().st_size == 0:
        raise ExternalToolFailure(
            f"Expected output missing or empty: {path}",
            command=result.command if result else None,
            returncode=result.returncode if result else None,
            stdout=result.stdout if result else "",
            stderr=result.stderr if result else "",
            stage=stage,
        )
    return path
