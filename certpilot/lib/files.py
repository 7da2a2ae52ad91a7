"""
File handling utilities for certpilot.

This module provides the filesystem primitives the export stage and the
doctor rely on:

- path resolution without touching the disk
- temporary sibling paths and the delete-then-rename replace
- SHA-256 digests of written artifacts
- writability probes that never touch the final path
"""

import hashlib
import os
import uuid
from typing import Optional, Tuple

from certpilot.lib.logger import logging


def resolve_path(path: Optional[str]) -> Optional[str]:
    """
    Resolve a user-supplied path to an absolute path.

    Args:
        path: Path as written in the request file

    Returns:
        Absolute path, or None when the path is blank or cannot be resolved
    """
    if path is None or path.strip() == "":
        return None

    try:
        return os.path.abspath(os.path.expanduser(path))
    except (TypeError, ValueError) as e:
        logging.debug(f"Failed to resolve path {path!r}: {e}")
        return None


def temp_sibling_path(final_path: str) -> str:
    """
    Build a unique temporary path next to the final path.

    The temporary file lives in the destination directory so that the final
    rename never crosses filesystems.

    Example:
        >>> temp_sibling_path("/out/leaf.pem")  # doctest: +SKIP
        '/out/leaf.tmp-3f2a...c1.pem'
    """
    directory = os.path.dirname(final_path)
    stem, ext = os.path.splitext(os.path.basename(final_path))
    return os.path.join(directory, f"{stem}.tmp-{uuid.uuid4().hex}{ext}")


def replace_file(temp_path: str, final_path: str) -> None:
    """
    Move a verified temporary file into place.

    Deletes an existing destination, then renames the temporary file over it.

    Raises:
        OSError: If the delete or the rename fails
    """
    if os.path.exists(final_path):
        logging.debug(f"Removing existing file {final_path!r}")
        os.remove(final_path)

    os.rename(temp_path, final_path)
    logging.debug(f"Moved {temp_path!r} to {final_path!r}")


def remove_if_exists(path: Optional[str]) -> None:
    """Delete a leftover temporary file, logging instead of raising."""
    if not path or not os.path.exists(path):
        return

    try:
        os.remove(path)
    except OSError as e:
        logging.warning(f"Failed to remove temporary file {path!r}: {e}")


def read_text(path: str) -> str:
    """Read a text file, replacing undecodable bytes."""
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return f.read()


def sha256_file(path: str) -> str:
    """
    Compute the SHA-256 digest of a file.

    Returns:
        Lowercase hex digest
    """
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def probe_writable(directory: str) -> Tuple[bool, Optional[str]]:
    """
    Prove a directory is writable by creating and deleting a probe file.

    The probe name is random so concurrent probes in the same directory do
    not collide.

    Args:
        directory: Directory to probe

    Returns:
        Tuple of (writable, error message)
    """
    probe_path = os.path.join(directory, f".probe-{uuid.uuid4().hex}")

    try:
        with open(probe_path, "xb") as f:
            f.write(b"probe")
    except OSError as e:
        logging.debug(f"Writability probe failed in {directory!r}: {e}")
        return False, str(e)

    try:
        os.remove(probe_path)
    except OSError as e:
        logging.debug(f"Failed to delete probe file {probe_path!r}: {e}")
        return False, str(e)

    return True, None
