"""Best-effort extraction of ``name`` and ``version`` from package.json files.

Installed manifests are not always well-formed: partially written files,
trailing garbage after the closing brace and merge debris all occur in the
wild. The reader therefore does not parse JSON. It makes one pass over the
text, tokenising string literals and structural characters, and records the
first ``"name": "<value>"`` and ``"version": "<value>"`` pairs. Pairs at the
top level of the outermost object win over nested ones (``author.name``);
when no top-level pair exists the first nested one is used.

Public API:
    ManifestFields: The extracted (name, version) pair
    read_fields: Extract fields from a manifest path, never raising
    parse_fields: Extract fields from manifest text
    package_name_from_path: Package name implied by a manifest's location
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r'"((?:[^"\\\n]|\\.)*)"|([{}\[\]:,])')

_FIELDS: tuple[str, ...] = ("name", "version")


@dataclass(frozen=True)
class ManifestFields:
    """Name and version read from a manifest; empty strings when absent."""

    name: str = ""
    version: str = ""

    @property
    def complete(self) -> bool:
        return bool(self.name and self.version)


def parse_fields(text: str) -> ManifestFields:
    """Extract the first ``name`` and ``version`` string fields from text.

    Args:
        text: Manifest content, possibly malformed.

    Returns:
        ManifestFields with empty strings for fields that were not found.
    """
    top_level: dict[str, str] = {}
    nested: dict[str, str] = {}
    depth = 0
    # Last three significant tokens: (kind, value) where kind is "s" or punctuation
    window: list[tuple[str, str]] = []

    for match in _TOKEN_RE.finditer(text):
        string_value, punct = match.group(1), match.group(2)
        if punct is not None:
            if punct in "{[":
                depth += 1
            elif punct in "}]":
                depth = max(depth - 1, 0)
            window.append((punct, punct))
        else:
            window.append(("s", string_value))
            if len(window) >= 3:
                key_tok, colon_tok, value_tok = window[-3:]
                if (
                    key_tok[0] == "s"
                    and colon_tok[0] == ":"
                    and key_tok[1] in _FIELDS
                ):
                    target = top_level if depth == 1 else nested
                    target.setdefault(key_tok[1], value_tok[1])
                    if len(top_level) == len(_FIELDS):
                        break
        del window[:-3]

    return ManifestFields(
        name=top_level.get("name", nested.get("name", "")),
        version=top_level.get("version", nested.get("version", "")),
    )


def read_fields(path: Path) -> ManifestFields:
    """Read ``name`` and ``version`` from a manifest file.

    Never raises: an unreadable file yields empty fields.

    Args:
        path: Path to a package.json file.

    Returns:
        The extracted ManifestFields.
    """
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        logger.warning("Cannot read manifest %s: %s", path, exc)
        return ManifestFields()
    return parse_fields(text)


def package_name_from_path(path: Path) -> str:
    """Return the package name implied by a manifest's directory.

    ``.../node_modules/chalk/package.json`` gives ``chalk`` and
    ``.../node_modules/@scope/pkg/package.json`` gives ``@scope/pkg``.
    Scope directories are recognised anywhere, since global prefixes such as
    ``/usr/local/lib/node`` hold packages without a ``node_modules`` level.

    Args:
        path: Path to a package.json file.

    Returns:
        The derived package name.
    """
    parent = path.parent
    scope = parent.parent.name
    if scope.startswith("@") and scope != "@":
        return f"{scope}/{parent.name}"
    return parent.name
