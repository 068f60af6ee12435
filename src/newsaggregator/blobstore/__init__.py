"""Utilities for working with the local blobstore that receives run artefacts."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Union

# The blobstore lives inside the package so artefacts stay next to the code
# that produces them.  ``NEWSAGGREGATOR_BLOB_ROOT`` points it elsewhere.
_PACKAGE_DIR = Path(__file__).resolve().parent

#: Name of the directory under :mod:`newsaggregator.blobstore` that contains the data.
DEFAULT_BLOB_SUBDIR = "data"

#: Default location where handoff artefacts are stored.
DEFAULT_BLOB_ROOT = _PACKAGE_DIR / DEFAULT_BLOB_SUBDIR

#: Environment variable overriding :data:`DEFAULT_BLOB_ROOT`.
BLOB_ROOT_ENV = "NEWSAGGREGATOR_BLOB_ROOT"


_Pathish = Union[str, Path]


def resolve_blob_root(blob_root: _Pathish | None = None) -> Path:
    """Return a :class:`Path` pointing at the blob root.

    ``blob_root`` may be either a string or :class:`Path`.  When ``None`` is
    provided, the ``NEWSAGGREGATOR_BLOB_ROOT`` environment variable is
    consulted before falling back to :data:`DEFAULT_BLOB_ROOT`.  The path is
    not created on disk; callers can use :func:`ensure_blob_root` for that.
    """

    if blob_root is None:
        override = os.environ.get(BLOB_ROOT_ENV)
        return Path(override) if override else DEFAULT_BLOB_ROOT
    if isinstance(blob_root, Path):
        return blob_root
    return Path(blob_root)


def ensure_blob_root(blob_root: _Pathish | None = None) -> Path:
    """Ensure the blob root exists and return it as a :class:`Path`."""

    root = resolve_blob_root(blob_root)
    root.mkdir(parents=True, exist_ok=True)
    return root


__all__ = [
    "BLOB_ROOT_ENV",
    "DEFAULT_BLOB_ROOT",
    "DEFAULT_BLOB_SUBDIR",
    "ensure_blob_root",
    "resolve_blob_root",
]
