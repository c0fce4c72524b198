"""Shallow git clones with token authentication."""

import asyncio
import logging
import os
import re
import shutil
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

TOKEN_USER = "x-token-auth"
CLONE_TIMEOUT = 600.0

_CREDENTIALS_RE = re.compile(rf"{TOKEN_USER}:[^@]+@")


class GitCloneError(Exception):
    """git clone exited with an error. The message never contains the token."""


def sanitize(text: str) -> str:
    """Redact the token from URLs embedded in git output."""
    return _CREDENTIALS_RE.sub(f"{TOKEN_USER}:***@", text)


def authenticated_url(repo_url: str, token: Optional[str]) -> str:
    """Inject the token into an HTTPS clone URL; other URLs are returned unchanged."""
    if not token or not repo_url.startswith("https://"):
        return repo_url
    parts = urlsplit(repo_url)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    netloc = f"{TOKEN_USER}:{quote(token, safe='')}@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


async def clone_repository(
    repo_url: str,
    branch: str,
    token: Optional[str],
    clone_base_dir: Path,
    timeout: float = CLONE_TIMEOUT,
) -> Path:
    """Shallow-clone one branch into a fresh directory under ``clone_base_dir``.

    Args:
        repo_url: HTTPS or SSH clone URL
        branch: Branch to clone
        token: Access token injected into HTTPS URLs
        clone_base_dir: Parent directory for clones
        timeout: Seconds before the clone is killed

    Returns:
        Path of the cloned working tree

    Raises:
        GitCloneError: If git fails or times out
    """
    clone_base_dir.mkdir(parents=True, exist_ok=True)
    clone_dir = clone_base_dir / f"repo_{uuid.uuid4()}"

    logger.info(f"Cloning {repo_url} ({branch}) into {clone_dir}")
    env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
    proc = await asyncio.create_subprocess_exec(
        "git",
        "clone",
        "--depth",
        "1",
        "--branch",
        branch,
        authenticated_url(repo_url, token),
        str(clone_dir),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=env,
    )

    try:
        _, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        remove_clone(clone_dir)
        raise GitCloneError(f"git clone timed out after {timeout:.0f}s")
    except asyncio.CancelledError:
        proc.kill()
        remove_clone(clone_dir)
        raise

    if proc.returncode != 0:
        remove_clone(clone_dir)
        message = sanitize(stderr.decode(errors="replace")).strip()
        raise GitCloneError(f"git clone failed (exit {proc.returncode}): {message}")

    return clone_dir


def remove_clone(clone_dir: Path) -> None:
    """Delete a clone directory; failures are logged, not raised."""
    try:
        shutil.rmtree(clone_dir)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to clean up clone directory {clone_dir}: {e}")
