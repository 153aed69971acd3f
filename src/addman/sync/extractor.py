"""
Selective Zip Extractor

Replaces the top-level directories an add-on owns with the contents of a new
archive:

1. remove every directory recorded as owned by the previous extraction
2. walk the archive once, filtering members by the add-on's directory rules,
   creating directories and recording newly owned top-level names
3. write the surviving files, optionally fanned out onto the disk pool

All directories exist before the first file write, so archives that list a
file ahead of its directory extract fine.
"""

import os
import shutil
import threading
import zipfile
from concurrent.futures import Future, wait
from typing import List, Optional, Sequence

from rich.markup import escape

from addman.constants import DIR_SEPARATOR
from addman.exceptions import ExtractionError, FilesystemError
from addman.log_utils import logger

from .files import is_safe_archive_member, remove_owned_dir, safe_extract_path
from .interfaces import Addon, UpdateInfo
from .task_pool import TaskPool


def should_skip(
    member_name: str, include_dirs: Sequence[str], exclude_dirs: Sequence[str]
) -> bool:
    """
    Decide whether an archive member is filtered out.

    Exclusion always wins. With no include prefixes everything that is not
    excluded is extracted; otherwise only members under an include prefix are.
    """
    for exclude in exclude_dirs:
        if member_name.startswith(exclude):
            return True

    for include in include_dirs:
        if member_name.startswith(include):
            return False

    return len(include_dirs) != 0


def top_level_dir(member_name: str) -> Optional[str]:
    """Return the first path component of a member that lives inside a directory."""
    head, sep, _rest = member_name.partition(DIR_SEPARATOR)
    if not sep or not head:
        return None
    return head


class ZipExtractor:
    """Extract an add-on's archive according to its include/exclude rules."""

    def __init__(self, disk_pool: Optional[TaskPool] = None):
        """
        Parameters:
            disk_pool (Optional[TaskPool]): Pool for file writes; files are written inline when None.
        """
        self.disk_pool = disk_pool

    def extract(
        self,
        archive: zipfile.ZipFile,
        addon: Addon,
        destination: str,
        info: Optional[UpdateInfo] = None,
    ) -> List[str]:
        """
        Replace the add-on's owned directories under `destination` with the archive contents.

        `info.extracted_dirs` (the add-on's own update info when `info` is
        omitted) is updated in place as ownership changes, so after a failure
        it still names every directory left on disk by this call.

        Returns:
            List[str]: The top-level directories now owned, in order of first appearance.

        Raises:
            FilesystemError: If a stale directory cannot be removed, a directory cannot be created, or a member path is unsafe.
            ExtractionError: If any file fails to extract.
        """
        info = info if info is not None else addon.update_info

        try:
            os.makedirs(destination, exist_ok=True)
        except OSError as e:
            raise FilesystemError(
                "error creating addons dir", path=destination, details=str(e)
            ) from e

        # stale files from the previous version go before anything is written
        while info.extracted_dirs:
            remove_owned_dir(destination, info.extracted_dirs[0])
            info.extracted_dirs.pop(0)

        files = self._create_dirs(archive, addon, destination, info)
        self._write_files(archive, files, destination)
        return list(info.extracted_dirs)

    def _own(self, info: UpdateInfo, member_name: str) -> None:
        top = top_level_dir(member_name)
        if top is not None and top not in info.extracted_dirs:
            info.extracted_dirs.append(top)

    def _create_dirs(
        self,
        archive: zipfile.ZipFile,
        addon: Addon,
        destination: str,
        info: UpdateInfo,
    ) -> List[zipfile.ZipInfo]:
        files: List[zipfile.ZipInfo] = []
        for member in archive.infolist():
            name = member.filename
            if should_skip(name, addon.include_dirs, addon.exclude_dirs):
                continue
            if not is_safe_archive_member(name):
                raise FilesystemError(
                    "unsafe archive member (possible traversal)", path=name
                )

            dir_name = name if member.is_dir() else os.path.dirname(name)
            self._own(info, name)
            if dir_name:
                try:
                    target = safe_extract_path(destination, dir_name)
                    os.makedirs(target, exist_ok=True)
                except ValueError as e:
                    raise FilesystemError(
                        "unsafe archive member", path=name, details=str(e)
                    ) from e
                except OSError as e:
                    raise FilesystemError(
                        f"error creating dir {dir_name}", path=dir_name, details=str(e)
                    ) from e

            if not member.is_dir():
                files.append(member)
        return files

    def _write_files(
        self,
        archive: zipfile.ZipFile,
        files: List[zipfile.ZipInfo],
        destination: str,
    ) -> None:
        failed = threading.Event()

        def extract_one(member: zipfile.ZipInfo) -> None:
            # queued writes are skipped once a sibling has failed
            if failed.is_set():
                return
            try:
                self._write_file(archive, member, destination)
            except Exception:
                failed.set()
                raise

        if self.disk_pool is None:
            for member in files:
                try:
                    extract_one(member)
                except (OSError, ValueError, zipfile.BadZipFile) as e:
                    raise ExtractionError(
                        "error unzipping archive", path=member.filename, details=str(e)
                    ) from e
            return

        futures: List[Future] = [
            self.disk_pool.submit(lambda m=member: extract_one(m)) for member in files
        ]
        wait(futures)
        for member, future in zip(files, futures):
            if future.cancelled():
                raise ExtractionError("extraction cancelled", path=member.filename)
            exc = future.exception()
            if exc is not None:
                raise ExtractionError(
                    "error unzipping archive", path=member.filename, details=str(exc)
                ) from exc

    def _write_file(
        self, archive: zipfile.ZipFile, member: zipfile.ZipInfo, destination: str
    ) -> None:
        target = safe_extract_path(destination, member.filename)
        with archive.open(member) as source, open(target, "wb") as dest:
            shutil.copyfileobj(source, dest)

        mode = (member.external_attr >> 16) & 0o777
        if mode and os.name != "nt":
            os.chmod(target, mode)
        logger.debug("Extracted %s to %s", escape(member.filename), escape(target))
