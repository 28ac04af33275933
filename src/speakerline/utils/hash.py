"""Content hashing with a BLAKE2s default."""

from __future__ import annotations

from collections.abc import Iterable
from hashlib import blake2s, new
from pathlib import Path


def _iter_chunks(handle, chunk_size: int) -> Iterable[bytes]:
    while True:
        chunk = handle.read(chunk_size)
        if not chunk:
            break
        yield chunk


def hash_file(
    path: str | Path,
    *,
    algo: str = "blake2s",
    chunk_size: int = 1 << 16,
    digest_size: int | None = None,
) -> str:
    """Return the hexadecimal digest for ``path`` using ``algo``.

    ``algo`` may be any algorithm accepted by :func:`hashlib.new`; BLAKE2s is
    used by default because the feature cache hashes every input recording.
    """

    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(file_path)

    if algo.lower() == "blake2s":
        hasher = blake2s(digest_size=digest_size or blake2s().digest_size)
    else:
        hasher = new(algo)

    with file_path.open("rb") as handle:
        for chunk in _iter_chunks(handle, chunk_size):
            hasher.update(chunk)

    return hasher.hexdigest()


__all__ = ["hash_file"]
