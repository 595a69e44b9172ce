"""
Sync domain service - two-tree comparison and reconciliation
"""
import os
import posixpath
import tempfile
from dataclasses import replace
from fnmatch import fnmatch
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ...core.exceptions import RemoteError, SyncError
from ...core.interfaces import LocalFileSystem
from ...core.logging import get_logger
from ...core.utils import join_remote, remote_parent
from ..session.manager import SessionManager
from ..session.models import FileEntry, FileType
from ..transfer.coordinator import TransferCoordinator
from ..transfer.models import TransferKind
from .comparer import compare_entries, matches_any
from .models import (
    SelectionCriteria,
    SyncAction,
    SyncDirection,
    SyncEndpoint,
    SyncItem,
    SyncOptions,
    SyncResult,
    SyncSide,
)

logger = get_logger(__name__)


class DirectorySynchronizer:
    """
    Compares two trees (each local or remote) and reconciles them.

    Small files and remote-to-remote copies go straight through
    RemoteFileSession; files at or above the large-file threshold are
    queued on the TransferCoordinator when one is available.
    """

    def __init__(
        self,
        sessions: SessionManager,
        local_fs: LocalFileSystem,
        coordinator: Optional[TransferCoordinator] = None,
        large_file_threshold: Optional[int] = None,
        on_progress: Optional[Callable[[int, int, str], None]] = None,
    ):
        """
        Initialize synchronizer.

        Args:
            sessions: Remote sessions by host id
            local_fs: Local filesystem collaborator
            coordinator: Background queue for large transfers
            large_file_threshold: Bytes at which transfers are queued
                (coordinator config when None)
            on_progress: Called with (done, total, item name) while executing
        """
        self.sessions = sessions
        self.local_fs = local_fs
        self.coordinator = coordinator
        if large_file_threshold is None and coordinator is not None:
            large_file_threshold = coordinator.config.large_file_threshold
        self.large_file_threshold = large_file_threshold
        self.on_progress = on_progress

    # ============================================================
    # Listing
    # ============================================================

    def _list_dir(self, endpoint: SyncEndpoint, path: str) -> List[FileEntry]:
        if endpoint.is_local:
            return self.local_fs.list(path)
        return self.sessions.session(endpoint.host_id).list(path, use_cache=False)

    def _relative(self, endpoint: SyncEndpoint, root: str, path: str) -> str:
        if endpoint.is_local:
            return Path(os.path.relpath(path, root)).as_posix()
        return posixpath.relpath(path, root)

    def list_tree(self, endpoint: SyncEndpoint, options: Optional[SyncOptions] = None) -> Dict[str, FileEntry]:
        """
        Flatten a tree into relative path -> entry.

        Excluded names are pruned with their subtrees. With include
        patterns, only matching non-directories are returned; directories
        are still walked.
        """
        options = options or SyncOptions()
        root = endpoint.path
        if not endpoint.is_local:
            root = self.sessions.session(endpoint.host_id).expand_path(root)

        tree: Dict[str, FileEntry] = {}
        stack = [root]
        while stack:
            directory = stack.pop()
            for entry in self._list_dir(endpoint, directory):
                relative = self._relative(endpoint, root, entry.path)
                if options.exclude and matches_any(entry.name, relative, options.exclude):
                    continue
                if entry.is_dir:
                    stack.append(entry.path)
                    if not options.include:
                        tree[relative] = entry
                elif not options.include or matches_any(entry.name, relative, options.include):
                    tree[relative] = entry
        return tree

    # ============================================================
    # Comparison
    # ============================================================

    def compare(
        self,
        left: SyncEndpoint,
        right: SyncEndpoint,
        options: Optional[SyncOptions] = None,
    ) -> List[SyncItem]:
        """
        Diff two trees.

        Returns:
            Items sorted by relative path; never contains DELETE actions
        """
        options = options or SyncOptions()
        logger.info(f"Comparing {left} with {right}")
        left_tree = self.list_tree(left, options)
        right_tree = self.list_tree(right, options)
        items = compare_entries(left_tree, right_tree, options)
        logger.info(f"{len(items)} differences between {left} and {right}")
        return items

    def with_deletions(self, items: List[SyncItem], side: SyncSide) -> List[SyncItem]:
        """
        Opt in to deletions: items that exist only on ``side`` become
        DELETE items for that side instead of copies to the other side.

        Entries inside a directory that is itself deleted are dropped.
        """
        side = SyncSide(side)
        only_here = SyncDirection.LEFT_TO_RIGHT if side == SyncSide.LEFT else SyncDirection.RIGHT_TO_LEFT

        result: List[SyncItem] = []
        deleted_dirs: List[str] = []
        for item in items:
            if item.action != SyncAction.COPY or item.direction != only_here:
                result.append(item)
                continue
            if any(item.name.startswith(d + "/") for d in deleted_dirs):
                continue
            if item.type == FileType.DIRECTORY:
                deleted_dirs.append(item.name)
            result.append(replace(
                item,
                action=SyncAction.DELETE,
                reason=f"Only exists on the {side.value}, deletion requested",
            ))
        return result

    # ============================================================
    # Execution
    # ============================================================

    def execute(self, items: List[SyncItem], left: SyncEndpoint, right: SyncEndpoint) -> SyncResult:
        """
        Apply a plan.

        SKIP and CONFLICT items are left alone. Items are applied in order,
        so parents are created before their contents.

        Raises:
            SyncError: On the first item that fails
        """
        result = SyncResult()
        total = len(items)
        for index, item in enumerate(items, 1):
            try:
                self._apply(item, left, right, result)
            except (RemoteError, OSError) as e:
                raise SyncError(f"Failed to sync {item.name}: {e}") from e
            if self.on_progress is not None:
                self.on_progress(index, total, item.name)
        logger.info(
            f"Sync {left} <-> {right}: {result.copied} copied, {result.updated} updated, "
            f"{result.deleted} deleted, {result.skipped} skipped, {len(result.queued_jobs)} queued"
        )
        return result

    def _apply(self, item: SyncItem, left: SyncEndpoint, right: SyncEndpoint, result: SyncResult) -> None:
        if item.action == SyncAction.SKIP or item.direction == SyncDirection.CONFLICT:
            result.skipped += 1
            return

        if item.action == SyncAction.DELETE:
            if item.left_path is not None:
                self._delete(left, item.left_path)
            if item.right_path is not None:
                self._delete(right, item.right_path)
            result.deleted += 1
            return

        if item.direction == SyncDirection.LEFT_TO_RIGHT:
            src, dst = left, right
            src_path, dst_path, size = item.left_path, item.right_path, item.left_size
        else:
            src, dst = right, left
            src_path, dst_path, size = item.right_path, item.left_path, item.right_size
        if dst_path is None:
            dst_path = self._destination(dst, item.name)

        job_id = self._transfer(item.type, src, src_path, dst, dst_path, size or 0)
        if job_id is not None:
            result.queued_jobs.append(job_id)
        if item.action == SyncAction.UPDATE:
            result.updated += 1
        else:
            result.copied += 1

    def _destination(self, endpoint: SyncEndpoint, name: str) -> str:
        if endpoint.is_local:
            return str(Path(endpoint.path) / Path(name))
        root = self.sessions.session(endpoint.host_id).expand_path(endpoint.path)
        return join_remote(root, name)

    def _transfer(
        self,
        entry_type: FileType,
        src: SyncEndpoint,
        src_path: str,
        dst: SyncEndpoint,
        dst_path: str,
        size: int,
    ) -> Optional[str]:
        """Copy one item; returns a job id when it was queued"""
        if entry_type == FileType.DIRECTORY:
            if dst.is_local:
                self.local_fs.mkdir(dst_path)
            else:
                self.sessions.session(dst.host_id).mkdir(dst_path, parents=True)
            return None

        if src.is_local and dst.is_local:
            self.local_fs.mkdir(str(Path(dst_path).parent))
            self.local_fs.copy(src_path, dst_path)
            return None

        if not src.is_local and not dst.is_local:
            source = self.sessions.session(src.host_id)
            target = self.sessions.session(dst.host_id)
            target.mkdir(remote_parent(dst_path), parents=True)
            if src.host_id == dst.host_id:
                source.copy(src_path, dst_path)
            else:
                # No direct path between hosts; relay through a local temp file
                with tempfile.TemporaryDirectory(prefix="remotefs-") as tmp:
                    staged = Path(tmp) / posixpath.basename(src_path)
                    source.get(src_path, staged)
                    target.put(staged, dst_path)
            return None

        queue = self.coordinator is not None and self.large_file_threshold is not None and size >= self.large_file_threshold
        if src.is_local:
            session = self.sessions.session(dst.host_id)
            session.mkdir(remote_parent(dst_path), parents=True)
            if queue:
                return self.coordinator.add_job(TransferKind.UPLOAD, dst.host_id, src_path, dst_path, total_size=size).id
            session.put(src_path, dst_path)
            return None

        self.local_fs.mkdir(str(Path(dst_path).parent))
        if queue:
            return self.coordinator.add_job(TransferKind.DOWNLOAD, src.host_id, dst_path, src_path, total_size=size).id
        self.sessions.session(src.host_id).get(src_path, dst_path)
        return None

    def _delete(self, endpoint: SyncEndpoint, path: str) -> None:
        if endpoint.is_local:
            self.local_fs.delete(path)
        else:
            self.sessions.session(endpoint.host_id).delete(path, recursive=True)

    # ============================================================
    # Selection
    # ============================================================

    def advanced_select(self, endpoint: SyncEndpoint, criteria: SelectionCriteria) -> List[FileEntry]:
        """
        Files below ``endpoint`` matching every criterion that is set.

        Content matching reads local files directly and uses a remote grep
        for remote trees.
        """
        candidates = [entry for entry in self.list_tree(endpoint).values() if not entry.is_dir]
        selected = []
        for entry in candidates:
            if criteria.pattern and not fnmatch(entry.name, criteria.pattern):
                continue
            if criteria.newer_than is not None and entry.mtime <= criteria.newer_than:
                continue
            if criteria.older_than is not None and entry.mtime >= criteria.older_than:
                continue
            if criteria.min_size is not None and entry.size < criteria.min_size:
                continue
            if criteria.max_size is not None and entry.size > criteria.max_size:
                continue
            selected.append(entry)

        if criteria.content_contains and selected:
            if endpoint.is_local:
                needle = criteria.content_contains.encode("utf-8")
                selected = [e for e in selected if needle in self.local_fs.read(e.path)]
            else:
                session = self.sessions.session(endpoint.host_id)
                hits = set(session.search_files(endpoint.path, criteria.content_contains, by_content=True, max_results=100000))
                selected = [e for e in selected if e.path in hits]
        return sorted(selected, key=lambda e: e.path)
