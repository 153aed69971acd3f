"""
File Operations for the addman Sync Subsystem

Path-safety checks, guarded recursive removal and atomic writes used by the
extractor, the fetcher cache and the config writer.
"""

import os
import shutil
import tempfile
from typing import Any, Callable

from rich.markup import escape

from addman.exceptions import FilesystemError
from addman.log_utils import logger


def _is_within_base(real_base_dir: str, candidate: str) -> bool:
    """
    Determine whether the candidate path resides within the given base directory.

    Returns:
        True if the candidate path is inside `real_base_dir`, False otherwise.
    """
    try:
        return os.path.commonpath([real_base_dir, candidate]) == real_base_dir
    except ValueError:
        return False


def is_safe_archive_member(member_name: str) -> bool:
    """
    Determine whether an archive member name is safe to extract.

    Returns:
        `True` if the member name contains no absolute paths, parent-directory references, or null bytes, `False` otherwise.
    """
    if not member_name or member_name.startswith(("/", "\\")):
        return False
    if "\x00" in member_name:
        return False
    normalized = os.path.normpath(member_name)
    if os.path.isabs(normalized):
        return False
    if normalized == "..":
        return False
    if normalized.startswith(f"..{os.sep}"):
        return False
    if os.altsep and normalized.startswith(f"..{os.altsep}"):
        return False
    return True


def safe_extract_path(extract_dir: str, file_path: str) -> str:
    """
    Resolve a safe absolute extraction path and prevent directory traversal.

    Parameters:
        extract_dir (str): Base directory intended for extraction.
        file_path (str): Member path from the archive to be extracted.

    Returns:
        str: Absolute, normalized path inside extract_dir suitable for extraction.

    Raises:
        ValueError: If the resolved path is outside extract_dir.
    """
    real_extract_dir = os.path.realpath(extract_dir)
    prospective_path = os.path.join(real_extract_dir, file_path)
    normalized_path = os.path.realpath(prospective_path)

    if not _is_within_base(real_extract_dir, normalized_path):
        raise ValueError(
            f"Unsafe extraction path '{file_path}' is outside base '{extract_dir}'"
        )

    return normalized_path


def remove_owned_dir(base_dir: str, dir_name: str) -> bool:
    """
    Recursively remove a directory the add-on owns below `base_dir`.

    A directory that is already gone counts as removed. Symlinks are unlinked,
    never followed.

    Returns:
        bool: `True` if something was removed, `False` if nothing was there.

    Raises:
        FilesystemError: If the path escapes `base_dir` or cannot be removed.
    """
    real_base_dir = os.path.realpath(base_dir)
    path_to_remove = os.path.join(real_base_dir, dir_name)
    if not is_safe_archive_member(dir_name) or os.path.normpath(
        path_to_remove
    ) == os.path.normpath(real_base_dir):
        raise FilesystemError("refusing to remove unsafe directory", path=dir_name)

    try:
        if os.path.islink(path_to_remove):
            logger.debug("Removing symlink: %s", escape(path_to_remove))
            os.unlink(path_to_remove)
            return True

        if not os.path.lexists(path_to_remove):
            return False

        real_target = os.path.realpath(path_to_remove)
        if not _is_within_base(real_base_dir, real_target):
            raise FilesystemError(
                "refusing to remove directory outside the add-ons directory",
                path=path_to_remove,
            )

        if os.path.isdir(path_to_remove):
            shutil.rmtree(path_to_remove)
        else:
            os.remove(path_to_remove)
    except OSError as e:
        raise FilesystemError(
            f"error removing previously installed addon dir {dir_name}",
            path=path_to_remove,
            details=str(e),
        ) from e
    logger.debug("Removed %s", escape(path_to_remove))
    return True


def atomic_write(
    file_path: str, writer_func: Callable[[Any], None], suffix: str = ".tmp"
) -> None:
    """
    Write data to a file atomically by writing to a temporary file and atomically replacing the target on success.

    Parameters:
        file_path (str): Destination file path to be written.
        writer_func (Callable[[Any], None]): Callable that receives an open text file-like object and writes the desired content to it.
        suffix (str): Suffix to use for the temporary file name (default ".tmp").

    Raises:
        FilesystemError: If the temporary file cannot be created, written or moved into place.
    """
    try:
        temp_fd, temp_path = tempfile.mkstemp(
            dir=os.path.dirname(os.path.abspath(file_path)), prefix="tmp-", suffix=suffix
        )
    except OSError as e:
        raise FilesystemError(
            f"Could not create temporary file for {file_path}",
            path=file_path,
            details=str(e),
        ) from e

    try:
        with os.fdopen(temp_fd, "w", encoding="utf-8") as temp_f:
            writer_func(temp_f)
        os.replace(temp_path, file_path)
    except (UnicodeEncodeError, OSError) as e:
        raise FilesystemError(
            f"Could not write to {file_path}", path=file_path, details=str(e)
        ) from e
    finally:
        if os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except OSError:
                pass
