"""Stable repository identifiers derived from clone URLs."""

import logging
import os
import re
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

SSH_URL_RE = re.compile(r"^git@([^:]+):(.+)$")


@dataclass
class RepoIdentity:
    repo_id: str
    workspace: Optional[str] = None
    repo_slug: Optional[str] = None
    host: Optional[str] = None


def _clean_path(path: str) -> str:
    return re.sub(r"\.git$", "", path.strip("/"), flags=re.IGNORECASE)


def repo_id_from_slug(workspace: str, repo_slug: str) -> str:
    return f"{workspace}/{repo_slug}"


def _identity(host: str, path: str) -> RepoIdentity:
    parts = [p for p in _clean_path(path).split("/") if p]
    if "bitbucket.org" in host and len(parts) >= 2:
        return RepoIdentity(
            repo_id=repo_id_from_slug(parts[0], parts[1]),
            workspace=parts[0],
            repo_slug=parts[1],
            host=host,
        )
    return RepoIdentity(repo_id=f"{host}/{'/'.join(parts)}", host=host)


def derive_repo_id_from_url(repo_url: str) -> RepoIdentity:
    """Derive a stable repo id from a repository URL.

    Bitbucket URLs map to ``workspace/slug``; other hosts to ``host/path``;
    local checkouts to ``local/<directory name>``. Anything unparseable is used
    verbatim.

    Args:
        repo_url: HTTPS, SSH or file URL, or a local directory path

    Returns:
        Repository identity
    """
    trimmed = repo_url.strip()

    parsed = urlparse(trimmed)
    if parsed.scheme in ("http", "https", "ssh") and parsed.hostname:
        return _identity(parsed.hostname, parsed.path)

    if parsed.scheme == "file" or (not parsed.scheme and os.path.isdir(trimmed)):
        local_path = parsed.path if parsed.scheme == "file" else trimmed
        name = os.path.basename(os.path.normpath(local_path))
        return RepoIdentity(repo_id=f"local/{name}")

    ssh = SSH_URL_RE.match(trimmed)
    if ssh:
        return _identity(ssh.group(1), ssh.group(2))

    logger.warning(f"Failed to parse repo URL {trimmed!r}; using raw value as repo id")
    return RepoIdentity(repo_id=trimmed)


def parse_bitbucket_pr_url(pr_url: str) -> Optional[Tuple[str, str, int]]:
    """Split a Bitbucket pull request URL into (workspace, repo_slug, pr_id)."""
    match = re.match(r"^https?://bitbucket\.org/([^/]+)/([^/]+)/pull-requests/(\d+)", pr_url.strip())
    if not match:
        return None
    return match.group(1), match.group(2), int(match.group(3))
