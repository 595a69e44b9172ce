"""
Local filesystem collaborator
"""
import os
import shutil
import stat as stat_module
from pathlib import Path
from typing import List, Union

from ..core.constants import DIRECTORY_SIZE_UNKNOWN
from ..core.exceptions import NotFoundError, PermissionDeniedError
from ..core.interfaces import LocalFileSystem
from ..core.logging import get_logger
from ..core.utils import compute_file_hash
from ..domain.session.models import FileEntry, FileType, sort_entries

logger = get_logger(__name__)

PathLike = Union[str, Path]


def _entry(path: Path, st: os.stat_result, directory_sentinel: bool) -> FileEntry:
    mode = st.st_mode
    link_target = None
    if stat_module.S_ISLNK(mode):
        file_type = FileType.SYMLINK
        try:
            link_target = os.readlink(path)
        except OSError:
            link_target = None
    elif stat_module.S_ISDIR(mode):
        file_type = FileType.DIRECTORY
    else:
        file_type = FileType.FILE

    size = st.st_size
    if directory_sentinel and file_type == FileType.DIRECTORY:
        size = DIRECTORY_SIZE_UNKNOWN
    return FileEntry(
        name=path.name,
        path=str(path),
        size=size,
        type=file_type,
        mtime=st.st_mtime,
        permissions=stat_module.filemode(mode),
        owner=str(st.st_uid),
        group=str(st.st_gid),
        link_target=link_target,
    )


class OsFileSystem(LocalFileSystem):
    """LocalFileSystem backed by os / shutil"""

    def list(self, path: PathLike) -> List[FileEntry]:
        directory = Path(path).expanduser()
        try:
            children = list(directory.iterdir())
        except FileNotFoundError as e:
            raise NotFoundError(f"No such directory: {directory}") from e
        except PermissionError as e:
            raise PermissionDeniedError(f"Permission denied: {directory}") from e
        return sort_entries([_entry(child, child.lstat(), directory_sentinel=True) for child in children])

    def stat(self, path: PathLike) -> FileEntry:
        target = Path(path).expanduser()
        try:
            return _entry(target, target.stat(), directory_sentinel=False)
        except FileNotFoundError as e:
            raise NotFoundError(f"No such file or directory: {target}") from e

    def copy(self, src: PathLike, dst: PathLike) -> None:
        """Copy a file (with metadata) or a whole directory tree"""
        source, target = Path(src).expanduser(), Path(dst).expanduser()
        if source.is_dir() and not source.is_symlink():
            shutil.copytree(source, target, symlinks=True, dirs_exist_ok=True)
        else:
            shutil.copy2(source, target, follow_symlinks=False)
        logger.debug(f"Copied {source} -> {target}")

    def move(self, src: PathLike, dst: PathLike) -> None:
        shutil.move(str(Path(src).expanduser()), str(Path(dst).expanduser()))

    def delete(self, path: PathLike) -> None:
        target = Path(path).expanduser()
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        else:
            target.unlink()

    def read(self, path: PathLike) -> bytes:
        return Path(path).expanduser().read_bytes()

    def write(self, path: PathLike, data: bytes) -> None:
        target = Path(path).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def mkdir(self, path: PathLike) -> None:
        Path(path).expanduser().mkdir(parents=True, exist_ok=True)

    def checksum(self, path: PathLike, algorithm: str = "md5") -> str:
        return compute_file_hash(Path(path).expanduser(), algorithm)
