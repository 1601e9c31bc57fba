"""Git repository detection for the session journal."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from vibesync.constants import GIT_COMMAND_TIMEOUT

logger = logging.getLogger(__name__)


async def _git(*args: str, cwd: Path | str | None, timeout: float) -> str | None:
    """Run one git command and return its trimmed stdout, or None on any failure."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        logger.debug("git unavailable: %s", e)
        return None

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        logger.debug("git %s timed out after %.1fs", " ".join(args), timeout)
        return None

    if proc.returncode != 0:
        return None
    return stdout.decode(errors="replace").strip() or None


async def detect_git_context(
    cwd: Path | str | None = None, timeout: float = GIT_COMMAND_TIMEOUT
) -> tuple[str | None, str | None]:
    """
    Find the repository root and current branch for a directory.

    Returns:
        (repo_path, branch); both None outside a git checkout
    """
    repo = await _git("rev-parse", "--show-toplevel", cwd=cwd, timeout=timeout)
    if repo is None:
        return None, None
    branch = await _git("rev-parse", "--abbrev-ref", "HEAD", cwd=cwd, timeout=timeout)
    return repo, branch
