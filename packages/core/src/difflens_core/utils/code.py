"""Decide which changed files are worth sending to the model."""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable

# Binary and generated artefacts: the diff is either unavailable or noise.
NON_CODE_EXTENSIONS = (
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".svg",
    ".ico",
    ".webp",
    ".bmp",
    ".pdf",
    ".woff",
    ".woff2",
    ".ttf",
    ".eot",
    ".otf",
    ".mp4",
    ".mp3",
    ".wav",
    ".ogg",
    ".zip",
    ".tar",
    ".gz",
    ".rar",
    ".7z",
    ".jar",
    ".pyc",
    ".min.js",
    ".map",
    ".lock",  # yarn.lock, poetry.lock, Cargo.lock
)

_LOCK_FILES = {"package-lock.json", "pnpm-lock.yaml", "go.sum"}


def is_code_file(path: str) -> bool:
    name = path.rsplit("/", 1)[-1].lower()
    if name in _LOCK_FILES:
        return False
    return not name.endswith(NON_CODE_EXTENSIONS)


def is_excluded(path: str, patterns: Iterable[str]) -> bool:
    """Return True if ``path`` matches any exclude pattern.

    A pattern may be an fnmatch glob on the full path ("src/gen/*.py"), a
    glob on the basename ("*.snap"), or a directory name ("vendor/",
    "migrations") matching everything beneath it at any depth.
    """
    basename = path.rsplit("/", 1)[-1]
    for pattern in patterns:
        if fnmatch.fnmatch(path, pattern) or fnmatch.fnmatch(basename, pattern):
            return True
        prefix = pattern.rstrip("/") + "/"
        if path.startswith(prefix) or ("/" + prefix) in path:
            return True
    return False
