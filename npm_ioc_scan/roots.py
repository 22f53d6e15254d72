"""Root enumeration: the directories that hold installed npm package trees.

Roots come from an ordered list of provider strategies. Each provider knows
one family of path conventions (well-known global prefixes, version-suffixed
toolchain directories expanded by a one-level glob, per-user legacy globals,
user home directories) and exposes the same two-method capability set.

A candidate contributes a Root only if it is an existing directory at
enumeration time; anything else is dropped silently. The final list is
de-duplicated on the normalised absolute path, first occurrence wins.

Public API:
    RootProvider: Protocol every provider satisfies
    StaticRootProvider: Fixed list of directories
    GlobRootProvider: Glob patterns expanded one level (``*/lib/node_modules``)
    UserToolchainProvider: nvm / asdf / legacy globals under one home
    ProjectHomeProvider: User home directories as project roots
    default_global_providers: The standard provider list for a host
    discover_homes: Home directories under a users directory
    enumerate_roots: Run providers and de-duplicate their roots
    normalize_root_path: Canonical form used for root equality
"""

from __future__ import annotations

import glob
import logging
import os
from collections.abc import Iterable, Iterator, Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from npm_ioc_scan.config import UserContext
from npm_ioc_scan.models import GLOBAL_OWNER, Root, RootScope

logger = logging.getLogger(__name__)

# Global install prefixes, relative to the filesystem root
SYSTEM_GLOBAL_DIRS: tuple[str, ...] = (
    "opt/homebrew/lib/node_modules",
    "usr/local/lib/node_modules",
    "usr/lib/node_modules",
    "usr/local/lib/node",
)

# Homebrew Cellar keeps one directory per installed node version
SYSTEM_GLOBAL_GLOBS: tuple[str, ...] = (
    "opt/homebrew/Cellar/node/*/lib/node_modules",
    "usr/local/Cellar/node/*/lib/node_modules",
)

# Version-manager installs under a home directory
USER_TOOLCHAIN_GLOBS: tuple[str, ...] = (
    ".nvm/versions/node/*/lib/node_modules",
    ".asdf/installs/nodejs/*/lib/node_modules",
)

# Legacy per-user global prefixes
USER_LEGACY_DIRS: tuple[str, ...] = (
    ".node_modules",
    ".node/lib/node_modules",
)

# Entries under the users directory that are never personal homes
_NON_HOME_DIRS: frozenset[str] = frozenset(["Shared", "Guest", "lost+found"])


def normalize_root_path(path: str | os.PathLike[str]) -> Path:
    """Return the canonical absolute form of a root path.

    Resolves ``.``/``..`` segments, redundant separators and symlinks so that
    two spellings of one directory compare equal.
    """
    return Path(os.path.realpath(os.path.abspath(os.fspath(path))))


@runtime_checkable
class RootProvider(Protocol):
    """A strategy producing roots for one family of path conventions."""

    def is_available(self) -> bool:
        """Return True if this provider can contribute at least one root."""
        ...

    def enumerate(self) -> Iterator[Root]:
        """Yield the roots that currently exist, in a stable order."""
        ...


class StaticRootProvider:
    """Roots at fixed, well-known directory paths."""

    def __init__(
        self,
        paths: Iterable[str | os.PathLike[str]],
        scope: RootScope = RootScope.GLOBAL,
        owner: str = GLOBAL_OWNER,
    ) -> None:
        self.paths: list[Path] = [Path(p) for p in paths]
        self.scope = scope
        self.owner = owner

    def is_available(self) -> bool:
        return any(p.is_dir() for p in self.paths)

    def enumerate(self) -> Iterator[Root]:
        for path in self.paths:
            if path.is_dir():
                yield Root(normalize_root_path(path), self.scope, self.owner)
            else:
                logger.debug("Root candidate missing: %s", path)

    def __repr__(self) -> str:
        return f"StaticRootProvider({[str(p) for p in self.paths]})"


class GlobRootProvider:
    """Roots found by expanding glob patterns (one wildcard level each)."""

    def __init__(
        self,
        patterns: Iterable[str | os.PathLike[str]],
        scope: RootScope = RootScope.GLOBAL,
        owner: str = GLOBAL_OWNER,
    ) -> None:
        self.patterns: list[str] = [os.fspath(p) for p in patterns]
        self.scope = scope
        self.owner = owner

    def _expand(self) -> Iterator[Path]:
        for pattern in self.patterns:
            matches = sorted(glob.glob(pattern))
            if not matches:
                logger.debug("No directories match %s", pattern)
            for match in matches:
                path = Path(match)
                if path.is_dir():
                    yield path

    def is_available(self) -> bool:
        return next(self._expand(), None) is not None

    def enumerate(self) -> Iterator[Root]:
        for path in self._expand():
            yield Root(normalize_root_path(path), self.scope, self.owner)

    def __repr__(self) -> str:
        return f"GlobRootProvider({self.patterns})"


class UserToolchainProvider:
    """Global roots installed under one home directory.

    Covers nvm and asdf version directories plus the legacy
    ``~/.node_modules`` and ``~/.node/lib/node_modules`` prefixes. These are
    global installs even though they live in a home, so they are tagged
    ``scope=global`` with the ``global`` owner.
    """

    def __init__(self, home: Path) -> None:
        self.home = home
        self._providers: list[RootProvider] = [
            GlobRootProvider(str(home / pattern) for pattern in USER_TOOLCHAIN_GLOBS),
            StaticRootProvider(home / rel for rel in USER_LEGACY_DIRS),
        ]

    def is_available(self) -> bool:
        return self.home.is_dir() and any(p.is_available() for p in self._providers)

    def enumerate(self) -> Iterator[Root]:
        if not self.home.is_dir():
            return
        for provider in self._providers:
            yield from provider.enumerate()

    def __repr__(self) -> str:
        return f"UserToolchainProvider({self.home})"


class ProjectHomeProvider:
    """User home directories as project roots, owned by their user."""

    def __init__(self, users: Iterable[UserContext]) -> None:
        self.users: list[UserContext] = list(users)

    def is_available(self) -> bool:
        return any(u.home.is_dir() for u in self.users)

    def enumerate(self) -> Iterator[Root]:
        for user in self.users:
            if user.home.is_dir():
                yield Root(normalize_root_path(user.home), RootScope.PROJECT, user.name)
            else:
                logger.debug("Home directory missing for %s: %s", user.name, user.home)

    def __repr__(self) -> str:
        return f"ProjectHomeProvider({[u.name for u in self.users]})"


def discover_homes(users_dir: Path) -> list[UserContext]:
    """List the home directories directly under ``users_dir``.

    Hidden entries and shared/system directories are skipped. The user name
    is taken from the directory name.

    Args:
        users_dir: Parent directory of homes (``/Users`` or ``/home``).

    Returns:
        UserContext entries sorted by name; empty if the directory is missing
        or unreadable.
    """
    try:
        entries = sorted(os.scandir(users_dir), key=lambda e: e.name)
    except OSError as exc:
        logger.warning("Cannot list home directories in %s: %s", users_dir, exc)
        return []

    homes: list[UserContext] = []
    for entry in entries:
        if entry.name.startswith(".") or entry.name in _NON_HOME_DIRS:
            continue
        try:
            if not entry.is_dir(follow_symlinks=False):
                continue
        except OSError:
            continue
        homes.append(UserContext(name=entry.name, home=Path(entry.path)))
    return homes


def default_global_providers(
    homes: Iterable[Path] = (),
    system_root: Path = Path("/"),
) -> list[RootProvider]:
    """Build the standard ordered provider list for global roots.

    Args:
        homes: Home directories whose toolchain installs are global roots.
        system_root: Filesystem root the system conventions are relative to.

    Returns:
        Providers in enumeration order: system prefixes, Homebrew Cellar,
        then each home's toolchains.
    """
    providers: list[RootProvider] = [
        StaticRootProvider(system_root / rel for rel in SYSTEM_GLOBAL_DIRS),
        GlobRootProvider(str(system_root / pattern) for pattern in SYSTEM_GLOBAL_GLOBS),
    ]
    providers.extend(UserToolchainProvider(home) for home in homes)
    return providers


def enumerate_roots(providers: Sequence[RootProvider]) -> list[Root]:
    """Run every provider and return the ordered, de-duplicated roots.

    Two roots are the same when their normalised paths are equal; the first
    one enumerated is kept.

    Args:
        providers: Providers in priority order.

    Returns:
        Roots in first-seen order.
    """
    seen: set[Path] = set()
    roots: list[Root] = []
    for provider in providers:
        if not provider.is_available():
            logger.debug("Provider unavailable: %r", provider)
            continue
        for root in provider.enumerate():
            key = normalize_root_path(root.path)
            if key in seen:
                logger.debug("Skipping duplicate root %s", key)
                continue
            seen.add(key)
            roots.append(root)
    return roots
