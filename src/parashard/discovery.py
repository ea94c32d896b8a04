"""Test file discovery."""

from __future__ import annotations

import fnmatch
import logging
import os
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

    from parashard.config import DiscoveryConfig

logger = logging.getLogger(__name__)

_GLOB_CHARS = frozenset("*?[")


def _is_pattern(value: str) -> bool:
    return any(char in value for char in _GLOB_CHARS)


def discover_test_files(root: Path, pattern: str, *, ignore: str = "") -> list[str]:
    """Discover test files under *root* matching a glob pattern.

    Args:
        root: Project root the pattern is evaluated against.
        pattern: Glob pattern relative to *root* (``**`` is recursive).
        ignore: Glob pattern of paths to leave out.

    Returns:
        Sorted, unique POSIX paths relative to *root*.
    """
    files: set[str] = set()
    for match in root.glob(pattern):
        if not match.is_file():
            continue
        relative = match.relative_to(root).as_posix()
        if ignore and fnmatch.fnmatch(relative, ignore):
            continue
        files.add(relative)
    return sorted(files)


def walk_directory(root: Path, directory: str) -> list[str]:
    """Return every file below *directory*, recursively, in sorted order."""
    base = root / directory
    files: list[str] = []
    for dirpath, dirnames, filenames in os.walk(base):
        dirnames.sort()
        for name in sorted(filenames):
            path = os.path.join(dirpath, name)
            files.append(os.path.relpath(path, root).replace(os.sep, "/"))
    return files


def collect_work_items(root: Path, discovery: DiscoveryConfig) -> list[str]:
    """Resolve the configured discovery source into an ordered path list.

    An explicit spec list wins; otherwise ``pattern`` is used as a glob,
    or walked as a directory when it contains no glob characters.
    """
    if discovery.specs:
        file_list = list(dict.fromkeys(discovery.specs))
    elif _is_pattern(discovery.pattern):
        logger.info("Using pattern %s to find test suites", discovery.pattern)
        file_list = discover_test_files(root, discovery.pattern, ignore=discovery.ignore)
    else:
        logger.info("Walking directory %s to find test suites", discovery.pattern)
        file_list = walk_directory(root, discovery.pattern)

    logger.info("%d test suite(s) found.", len(file_list))
    logger.debug("Paths to found suites: %s", file_list)
    return file_list
