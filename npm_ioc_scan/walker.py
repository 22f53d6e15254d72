"""Depth-bounded traversal of a root for manifests and lockfiles.

Both walks share one traversal that:

- Visits entries in sorted order so repeated runs yield identical sequences
- Never descends below ``max_depth`` (a root's direct children are depth 1)
- Prunes version-control, trash, cache, library and backup directories
- Does not follow symlinked directories and skips any directory already
  visited, which rules out cycles
- Skips subtrees it cannot list instead of aborting

When a TimeWindow is supplied, artifacts whose modification time falls
outside it are dropped as if they did not exist.

Public API:
    walk_manifests: Yield package.json files inside installed package trees
    walk_lockfiles: Yield package-lock.json, yarn.lock and pnpm-lock.yaml
    PRUNED_DIRS: Directory names never descended into
    LOCKFILE_KINDS: Lockfile name to ArtifactKind mapping
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from pathlib import Path

from npm_ioc_scan.config import TimeWindow
from npm_ioc_scan.models import ArtifactKind, CandidateArtifact, Root, RootScope

logger = logging.getLogger(__name__)

PRUNED_DIRS: frozenset[str] = frozenset([
    ".git",
    ".hg",
    ".svn",
    ".Trash",
    ".Trashes",
    ".cache",
    "Library",
    "Backups",
    "Backups.backupdb",
])

MANIFEST_NAME = "package.json"

PACKAGE_TREE_DIR = "node_modules"

LOCKFILE_KINDS: dict[str, ArtifactKind] = {
    ArtifactKind.PACKAGE_LOCK.filename: ArtifactKind.PACKAGE_LOCK,
    ArtifactKind.YARN_LOCK.filename: ArtifactKind.YARN_LOCK,
    ArtifactKind.PNPM_LOCK.filename: ArtifactKind.PNPM_LOCK,
}


def _iter_files(
    top: Path,
    max_depth: int,
    names: frozenset[str],
) -> Iterator[tuple[Path, int, float]]:
    """Yield ``(path, depth, mtime)`` for files named in ``names`` under ``top``."""
    visited: set[tuple[int, int]] = set()
    # Stack of (directory, depth of its children)
    stack: list[tuple[Path, int]] = [(top, 1)]

    while stack:
        directory, depth = stack.pop()
        try:
            dir_stat = directory.stat()
        except OSError as exc:
            logger.debug("Cannot stat %s: %s", directory, exc)
            continue
        key = (dir_stat.st_dev, dir_stat.st_ino)
        if key in visited:
            continue
        visited.add(key)

        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as exc:
            logger.debug("Skipping unreadable directory %s: %s", directory, exc)
            continue

        subdirs: list[Path] = []
        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    if depth < max_depth and entry.name not in PRUNED_DIRS:
                        subdirs.append(Path(entry.path))
                    continue
                if entry.name in names and entry.is_file():
                    yield Path(entry.path), depth, entry.stat().st_mtime
            except OSError as exc:
                logger.debug("Skipping %s: %s", entry.path, exc)

        # Reverse so the alphabetically first subdirectory is visited next
        for subdir in reversed(subdirs):
            stack.append((subdir, depth + 1))


def _in_package_tree(path: Path, root: Root) -> bool:
    """Return True if ``path`` is a manifest nested under a package tree.

    Global roots are package trees themselves. Below a project root the
    manifest must sit at least one directory below a ``node_modules``.
    """
    if root.scope is RootScope.GLOBAL:
        return True
    parts = path.relative_to(root.path).parts
    return PACKAGE_TREE_DIR in parts[:-2]


def walk_manifests(
    root: Root,
    max_depth: int,
    window: TimeWindow | None = None,
) -> Iterator[CandidateArtifact]:
    """Lazily yield manifest artifacts found under a root.

    Args:
        root: The root to traverse.
        max_depth: Deepest file level considered (root children are level 1).
        window: Optional modification-time window.

    Yields:
        CandidateArtifact entries of kind MANIFEST in traversal order.
    """
    for path, _depth, mtime in _iter_files(root.path, max_depth, frozenset([MANIFEST_NAME])):
        if not _in_package_tree(path, root):
            continue
        if window is not None and not window.contains(mtime):
            continue
        yield CandidateArtifact(path=path, kind=ArtifactKind.MANIFEST, root=root, mtime=mtime)


def walk_lockfiles(
    root: Root,
    max_depth: int,
    window: TimeWindow | None = None,
) -> Iterator[CandidateArtifact]:
    """Lazily yield lockfile artifacts found under a root.

    Args:
        root: The root to traverse.
        max_depth: Deepest file level considered (root children are level 1).
        window: Optional modification-time window.

    Yields:
        CandidateArtifact entries of a lockfile kind in traversal order.
    """
    for path, _depth, mtime in _iter_files(root.path, max_depth, frozenset(LOCKFILE_KINDS)):
        if window is not None and not window.contains(mtime):
            continue
        yield CandidateArtifact(
            path=path,
            kind=LOCKFILE_KINDS[path.name],
            root=root,
            mtime=mtime,
        )
