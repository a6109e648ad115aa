"""
Verify runner — runs the configured build/check command after a patch.

Thin glue around one shell command: its exit status and its combined
output.
"""

from __future__ import annotations

import locale
import logging
import os
import subprocess
import time

logger = logging.getLogger(__name__)

# Only the tail of the combined output is returned.
MAX_OUTPUT_CHARS = 20_000


def _decode_output(raw: bytes | None) -> str:
    """Decode subprocess output, trying UTF-8 first then system default."""
    if not raw:
        return ""
    try:
        return raw.decode("utf-8")
    except (UnicodeDecodeError, ValueError):
        pass
    try:
        return raw.decode(locale.getpreferredencoding(False), errors="replace")
    except (UnicodeDecodeError, ValueError, LookupError):
        return raw.decode("ascii", errors="replace")


def _tail(output: str, limit: int = MAX_OUTPUT_CHARS) -> str:
    if len(output) <= limit:
        return output
    return "[... output truncated ...]\n" + output[-limit:]


def run_verify(command: str, cwd: str, timeout: int = 300) -> dict:
    """
    Run *command* through the shell in *cwd*.

    Returns
    -------
    dict
        ``command``, ``success``, ``exit_code`` (None on timeout or launch
        failure), ``output`` (stdout and stderr interleaved, tail-truncated)
        and ``elapsed_seconds``.
    """
    if not command or not command.strip():
        return {
            "command": command,
            "success": False,
            "exit_code": None,
            "output": "No verify command is configured (verify_command).",
            "elapsed_seconds": 0.0,
        }

    run_env = os.environ.copy()
    run_env.setdefault("NO_COLOR", "1")
    run_env.setdefault("CI", "true")

    logger.info("[Verify] Running: %s", command)
    started = time.monotonic()
    exit_code = None
    try:
        proc = subprocess.Popen(
            command, shell=True, cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            env=run_env,
        )
    except OSError as exc:
        logger.error("[Verify] Could not start %s: %s", command, exc)
        output = f"Could not start verify command: {exc}"
    else:
        try:
            stdout_bytes, _ = proc.communicate(timeout=timeout)
            exit_code = proc.returncode
            output = _decode_output(stdout_bytes)
        except subprocess.TimeoutExpired:
            logger.warning("[Verify] Timed out after %ss: %s", timeout, command)
            proc.kill()
            stdout_bytes, _ = proc.communicate()
            output = (f"Command timed out after {timeout} seconds.\n"
                      f"{_decode_output(stdout_bytes)}")

    elapsed = time.monotonic() - started
    logger.info("[Verify] Exit code %s after %.1fs", exit_code, elapsed)
    return {
        "command": command,
        "success": exit_code == 0,
        "exit_code": exit_code,
        "output": _tail(output.strip()),
        "elapsed_seconds": round(elapsed, 3),
    }
