"""
Provides methods for checking the integrity of downloaded files against the
server's record of their size and checksum.
"""

import hashlib
import logging
from pathlib import Path
from typing import Optional

from omero_downloader.models.operations import RemoteFileInfo

log = logging.getLogger(__name__)

BUFFER_SIZE = 1048576  # 1 MB

# Server checksum names -> hashlib names
HASH_ALGORITHMS = {
    "SHA1-160": "sha1",
    "MD5-128": "md5",
    "SHA-256": "sha256",
    "SHA256": "sha256",
    "SHA-512": "sha512",
}


class FileIntegrityChecker:
    """A collection of static methods for validating downloaded files."""

    @staticmethod
    def hashlib_name(algorithm: Optional[str]) -> Optional[str]:
        """
        Translates a server checksum algorithm into a hashlib name.

        Returns:
            The hashlib name, or None if the algorithm is unknown or unset.
        """
        if not algorithm:
            return None
        name = HASH_ALGORITHMS.get(algorithm.upper(), algorithm.lower())
        if name in hashlib.algorithms_available:
            return name
        log.debug(f"Checksum algorithm '{algorithm}' is not supported; skipping.")
        return None

    @staticmethod
    def new_hasher(info: RemoteFileInfo):
        """Returns a hash object for the file's checksum, if one can be verified."""
        if not info.hash:
            return None
        name = FileIntegrityChecker.hashlib_name(info.hash_algorithm)
        return hashlib.new(name) if name else None

    @staticmethod
    def hash_file(filepath: Path, algorithm: str) -> str:
        """Computes the hex digest of a local file with a hashlib algorithm."""
        hasher = hashlib.new(algorithm)
        with open(filepath, "rb") as f:
            while chunk := f.read(BUFFER_SIZE):
                hasher.update(chunk)
        return hasher.hexdigest()

    @staticmethod
    def digest_matches(info: RemoteFileInfo, hexdigest: Optional[str]) -> bool:
        """Compares a digest with the server's, ignoring case."""
        if hexdigest is None or not info.hash:
            return True
        return hexdigest.lower() == info.hash.lower()

    @staticmethod
    def is_valid_copy(filepath: Path, info: RemoteFileInfo) -> bool:
        """
        Checks whether a local file is a complete copy of the remote file.

        The size must match. The checksum must match too when the server
        records one with a supported algorithm. A file whose size the server
        does not know is only accepted on a matching checksum.

        Args:
            filepath: Path to the local file.
            info: The server's record of the file.

        Returns:
            True if the local file can be kept, False otherwise.
        """
        try:
            if not filepath.is_file():
                return False
            local_size = filepath.stat().st_size
        except OSError as e:
            log.debug(f"Cannot inspect '{filepath}': {e}")
            return False

        if info.size is not None and local_size != info.size:
            log.debug(
                f"Size of '{filepath}' is {local_size}, server has {info.size}."
            )
            return False

        algorithm = FileIntegrityChecker.hashlib_name(info.hash_algorithm)
        if info.hash and algorithm:
            try:
                digest = FileIntegrityChecker.hash_file(filepath, algorithm)
            except OSError as e:
                log.debug(f"Cannot read '{filepath}' for checksum: {e}")
                return False
            if not FileIntegrityChecker.digest_matches(info, digest):
                log.warning(
                    f"[yellow]Checksum of '{filepath.name}' does not match the "
                    "server's; downloading again.[/yellow]"
                )
                return False
            return True

        return info.size is not None
