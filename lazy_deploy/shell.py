"""Shell and git utilities.

Provides simple wrappers around subprocess calls for running external
tools (git, docker, the cloud CLI), plus output formatting helpers.
"""

from __future__ import annotations

import subprocess
import sys


def git(*args: str, check: bool = True) -> str:
    """Run git in the current repository and return its stripped stdout.

    Raises:
        subprocess.CalledProcessError: If git fails and `check` is set,
            e.g. when the diff base is not in the local history.
    """
    result = subprocess.run(["git", *args], capture_output=True, text=True, check=check)
    return result.stdout.strip()


def run(*args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
    """Run an external command, capturing its output.

    Output is captured rather than streamed because several units run at
    once; interleaved tool output would be unreadable. Callers report the
    captured stderr when the command fails.

    Args:
        *args: Command and arguments (e.g., "docker", "push", "repo:tag").
        check: If True (default), raise on non-zero exit.

    Returns:
        CompletedProcess with returncode, stdout and stderr.
    """
    return subprocess.run(args, capture_output=True, text=True, check=check)


def tail(output: str | None, lines: int = 5) -> str:
    """Return the last few non-empty lines of command output for error messages."""
    if not output:
        return ""
    kept = [line for line in output.strip().splitlines() if line.strip()]
    return "\n".join(kept[-lines:])


def step(msg: str) -> None:
    """Print a ruled header before each deployment phase."""
    print(f"\n{'─' * 60}\n{msg}\n{'─' * 60}")


def fatal(msg: str) -> None:
    """Report an error on stderr and exit 1. Used by the workflow step helpers."""
    print(f"ERROR: {msg}", file=sys.stderr)
    sys.exit(1)
