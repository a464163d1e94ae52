"""Git reference parsing for in-ecosystem dependencies.

Recognised forms (``#ref`` suffix optional everywhere)::

    github:owner/repo#branch
    git+ssh://git@github.com/owner/repo.git#branch
    git+https://github.com/owner/repo.git#branch
    https://github.com/owner/repo
    git@github.com:owner/repo.git

Hosts are normalised to their short name (``github.com`` -> ``github``)
so refs from ``package.json`` and ``git remote get-url`` compare equal.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from ecoflow.settings import DEFAULT_BRANCH, DEFAULT_HOST, DEFAULT_OWNER

_HOST_ALIASES = {
    "github.com": "github",
    "gitlab.com": "gitlab",
    "bitbucket.org": "bitbucket",
}
_HOST_DOMAINS = {short: domain for domain, short in _HOST_ALIASES.items()}

_SHORTHAND_RE = re.compile(
    r"^(?P<host>github|gitlab|bitbucket):(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+?)(?:\.git)?(?:#(?P<ref>.*))?$"
)
_URL_RE = re.compile(
    r"^(?:git\+)?(?:ssh|https?|git)://(?:[\w.-]+@)?(?P<host>[\w.-]+)(?::\d+)?/"
    r"(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+?)(?:\.git)?/?(?:#(?P<ref>.*))?$"
)
_SCP_RE = re.compile(
    r"^(?:[\w.-]+@)?(?P<host>[\w.-]+\.[a-z]+):(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+?)(?:\.git)?(?:#(?P<ref>.*))?$"
)


@dataclass(frozen=True)
class GitRef:
    """A structured git reference."""

    host: str
    owner: str
    repo: str
    ref: Optional[str] = None

    @property
    def branch(self) -> str:
        """The branch/tag segment, or the main-line name when absent."""
        return self.ref or DEFAULT_BRANCH

    def clone_url(self) -> str:
        """SSH clone URL for this reference."""
        domain = _HOST_DOMAINS.get(self.host, self.host)
        return f"git@{domain}:{self.owner}/{self.repo}.git"

    def __str__(self) -> str:
        suffix = f"#{self.ref}" if self.ref else ""
        return f"{self.host}:{self.owner}/{self.repo}{suffix}"


def _normalise_host(host: str) -> str:
    return _HOST_ALIASES.get(host.lower(), host.lower())


def parse_git_ref(value: str) -> Optional[GitRef]:
    """Parse a git reference string.

    Args:
        value: Dependency version string or remote URL.

    Returns:
        GitRef, or None when ``value`` is not a recognised git reference
        (e.g. a semver range such as ``^1.2.0``).
    """
    text = (value or "").strip()
    if not text:
        return None

    for pattern in (_SHORTHAND_RE, _URL_RE, _SCP_RE):
        match = pattern.match(text)
        if match:
            ref = match.group("ref") or None
            return GitRef(
                host=_normalise_host(match.group("host")),
                owner=match.group("owner"),
                repo=match.group("repo"),
                ref=ref,
            )
    return None


def is_git_ref(value: str) -> bool:
    """True when ``value`` parses as a git reference."""
    return parse_git_ref(value) is not None


def is_ecosystem_ref(value: str, owner: str = DEFAULT_OWNER) -> bool:
    """True when ``value`` is a git reference owned by ``owner``."""
    parsed = parse_git_ref(value)
    return parsed is not None and parsed.owner.lower() == owner.lower()


def repo_name_for(package_name: str) -> str:
    """Repository name for a package (``@scope/pkg`` -> ``pkg``)."""
    return package_name.rsplit("/", 1)[-1]


def default_git_ref(
    package_name: str,
    owner: str = DEFAULT_OWNER,
    host: str = DEFAULT_HOST,
    branch: str = DEFAULT_BRANCH,
) -> str:
    """Synthesize the conventional reference for a package with no remote."""
    return f"{host}:{owner}/{repo_name_for(package_name)}#{branch}"


def required_branch_for(git_ref: str, default: str = DEFAULT_BRANCH) -> str:
    """Extract the branch segment of ``git_ref``, falling back to ``default``."""
    parsed = parse_git_ref(git_ref)
    if parsed is None or not parsed.ref:
        return default
    return parsed.ref
