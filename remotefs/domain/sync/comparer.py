"""
Tree comparison

Pure classification of two flattened trees into SyncItems. Never produces
DELETE items; deletions are layered on explicitly by the caller.
"""
from fnmatch import fnmatch
from typing import Dict, List, Sequence

from ..session.models import FileEntry
from .models import SyncAction, SyncDirection, SyncItem, SyncOptions


def matches_any(name: str, relative: str, patterns: Sequence[str]) -> bool:
    """Glob match against the entry name or its relative path"""
    return any(fnmatch(name, p) or fnmatch(relative, p) for p in patterns)


def _newer(left: FileEntry, right: FileEntry) -> SyncDirection:
    if left.mtime > right.mtime:
        return SyncDirection.LEFT_TO_RIGHT
    return SyncDirection.RIGHT_TO_LEFT


def _one_sided(name: str, entry: FileEntry, direction: SyncDirection) -> SyncItem:
    left = direction == SyncDirection.LEFT_TO_RIGHT
    return SyncItem(
        name=name,
        direction=direction,
        action=SyncAction.COPY,
        reason=f"Only exists on the {'left' if left else 'right'}",
        type=entry.type,
        left_path=entry.path if left else None,
        right_path=None if left else entry.path,
        left_size=entry.size if left else None,
        right_size=None if left else entry.size,
        left_mtime=entry.mtime if left else None,
        right_mtime=None if left else entry.mtime,
    )


def _both(name: str, left: FileEntry, right: FileEntry, direction, action, reason, entry_type) -> SyncItem:
    return SyncItem(
        name=name,
        direction=direction,
        action=action,
        reason=reason,
        type=entry_type,
        left_path=left.path,
        right_path=right.path,
        left_size=left.size,
        right_size=right.size,
        left_mtime=left.mtime,
        right_mtime=right.mtime,
    )


def compare_entries(
    left: Dict[str, FileEntry],
    right: Dict[str, FileEntry],
    options: SyncOptions,
) -> List[SyncItem]:
    """
    Classify every relative path present in either tree.

    Args:
        left: Relative path -> entry for the left tree
        right: Relative path -> entry for the right tree
        options: Comparison policy

    Returns:
        Items sorted by relative path; identical files and directories
        present on both sides produce no item
    """
    items: List[SyncItem] = []
    for name in sorted(set(left) | set(right)):
        l, r = left.get(name), right.get(name)
        if r is None:
            items.append(_one_sided(name, l, SyncDirection.LEFT_TO_RIGHT))
            continue
        if l is None:
            items.append(_one_sided(name, r, SyncDirection.RIGHT_TO_LEFT))
            continue

        if l.is_dir != r.is_dir:
            items.append(_both(
                name, l, r, SyncDirection.CONFLICT, SyncAction.SKIP,
                f"Type mismatch ({l.type.value} vs {r.type.value})", l.type,
            ))
            continue
        if l.is_dir:
            continue

        if options.compare_size and l.size != r.size:
            items.append(_both(
                name, l, r, _newer(l, r), SyncAction.UPDATE,
                f"Size differs ({l.size} vs {r.size})", l.type,
            ))
        elif options.compare_date and abs(l.mtime - r.mtime) > options.tolerance:
            items.append(_both(
                name, l, r, _newer(l, r), SyncAction.UPDATE,
                f"Modified time differs by {abs(l.mtime - r.mtime):.0f}s", l.type,
            ))
    return items
