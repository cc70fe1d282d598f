"""File operations utilities for the vps-backup CLI."""

import gzip
import hashlib
import logging
import os
import shutil
import tarfile
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class FileManager:
    """Manages compression, archiving and checksums of backup files."""

    def __init__(self, verbose: bool = False):
        """Initialize file manager."""
        self.verbose = verbose

    def compress_file(self, file_path: str, remove_original: bool = True) -> str:
        """
        Gzip a single file next to the original.

        Args:
            file_path: File to compress
            remove_original: Delete the uncompressed file afterwards

        Returns:
            str: Path to the ``.gz`` file
        """
        gz_path = f"{file_path}.gz"

        with open(file_path, "rb") as source, gzip.open(gz_path, "wb") as target:
            shutil.copyfileobj(source, target, CHUNK_SIZE)

        if remove_original:
            os.remove(file_path)

        if self.verbose:
            logger.debug(f"Compressed {file_path} -> {gz_path}")

        return gz_path

    def decompress_to(self, gz_path: str, output_path: str) -> None:
        """Decompress a ``.gz`` file into ``output_path``."""
        with gzip.open(gz_path, "rb") as source, open(output_path, "wb") as target:
            shutil.copyfileobj(source, target, CHUNK_SIZE)

    def archive_paths(
        self,
        archive_path: str,
        paths: List[str],
        tolerate_errors: bool = True,
    ) -> List[str]:
        """
        Create a gzip-compressed tar archive of files and directories.

        Member names keep the directory structure of each path with the
        leading ``/`` removed, so an archive extracts back in place with
        ``tar -xzf ARCHIVE -C /``.

        Args:
            archive_path: Output ``.tar.gz`` path
            paths: Files or directories to include
            tolerate_errors: Skip unreadable or missing members instead of raising

        Returns:
            List[str]: Messages for every member that was skipped

        Raises:
            OSError: If a member cannot be read and tolerate_errors is False
        """
        skipped = []

        def handle_error(path: str, error: OSError) -> None:
            if not tolerate_errors:
                raise error
            skipped.append(f"{path}: {error.strerror or error}")

        with tarfile.open(archive_path, "w:gz") as archive:
            for path in paths:
                if not os.path.lexists(path):
                    handle_error(path, FileNotFoundError(2, "No such file or directory", path))
                    continue

                for member in self._walk(path, handle_error):
                    try:
                        archive.add(member, arcname=member.lstrip(os.sep), recursive=False)
                    except OSError as e:
                        handle_error(member, e)

        if self.verbose:
            logger.debug(f"Archived {len(paths)} path(s) into {archive_path}")

        return skipped

    def sha256_file(self, file_path: str) -> str:
        """Calculate the SHA-256 digest of a file."""
        digest = hashlib.sha256()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                digest.update(chunk)
        return digest.hexdigest()

    def test_gzip(self, gz_path: str) -> Optional[str]:
        """
        Read a gzip stream to its end.

        Returns:
            Optional[str]: Error description, or None when the stream is intact
        """
        try:
            with gzip.open(gz_path, "rb") as f:
                while f.read(CHUNK_SIZE):
                    pass
        except (OSError, EOFError) as e:
            return str(e) or type(e).__name__
        return None

    def directory_size(self, path: str) -> int:
        """Total size in bytes of every regular file under ``path``."""
        if os.path.isfile(path):
            return os.path.getsize(path)

        total = 0
        for dirpath, _dirnames, filenames in os.walk(path):
            for filename in filenames:
                file_path = os.path.join(dirpath, filename)
                try:
                    if not os.path.islink(file_path):
                        total += os.path.getsize(file_path)
                except OSError:
                    continue
        return total

    def create_directory_structure(self, base_path: str, structure: Dict[str, dict], mode: int = 0o700) -> List[str]:
        """
        Create a nested directory structure.

        Args:
            base_path: Base directory path
            structure: Nested mapping of directory names
            mode: Permission mode applied to ``base_path``

        Returns:
            List[str]: List of created paths
        """
        created_paths = []

        def create_recursive(current_path: str, spec: Dict[str, dict]):
            for name, children in spec.items():
                full_path = os.path.join(current_path, name)
                if not os.path.isdir(full_path):
                    created_paths.append(full_path)
                os.makedirs(full_path, exist_ok=True)
                if children:
                    create_recursive(full_path, children)

        os.makedirs(base_path, exist_ok=True)
        os.chmod(base_path, mode)
        create_recursive(base_path, structure)

        if self.verbose:
            logger.debug(f"Created {len(created_paths)} paths")

        return created_paths

    def _walk(self, path: str, handle_error) -> List[str]:
        if not os.path.isdir(path) or os.path.islink(path):
            return [path]

        members = []
        for dirpath, dirnames, filenames in os.walk(path, onerror=lambda e: handle_error(e.filename, e)):
            members.append(dirpath)
            dirnames.sort()
            for filename in sorted(filenames):
                members.append(os.path.join(dirpath, filename))
            # os.walk does not descend into symlinked directories; keep them as links
            for dirname in dirnames:
                link = os.path.join(dirpath, dirname)
                if os.path.islink(link):
                    members.append(link)
        return members


def human_size(num_bytes: float) -> str:
    """Format a byte count the way ``ls -lh`` and ``du -h`` do (e.g. ``4.0K``)."""
    for unit in ["", "K", "M", "G", "T"]:
        if abs(num_bytes) < 1024 or unit == "T":
            if unit == "":
                return f"{int(num_bytes)}"
            if num_bytes < 10:
                return f"{num_bytes:.1f}{unit}"
            return f"{num_bytes:.0f}{unit}"
        num_bytes /= 1024.0
    return f"{num_bytes:.0f}T"
