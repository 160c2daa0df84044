# unhash/storage/paths.py
"""Mapping from SHA-256 digests to their sharded location under the data root."""
import re
from pathlib import Path
from typing import Optional, Union

SHA256_REGEX = re.compile(r"^[0-9a-fA-F]{64}$")


def is_valid_digest(value: Optional[str]) -> bool:
    """Check that a value is a 64 character hex SHA-256 digest (any case)."""
    return bool(value) and SHA256_REGEX.match(value) is not None


def digest_to_path(data_dir: Union[str, Path], digest: str) -> Path:
    """
    Resolve the canonical storage path for a digest.

    Layout: <data_dir>/<first two hex chars>/<64 hex chars>

    The digest must already be validated; it is lower-cased here so that
    upper-case input maps to the same object.
    """
    digest = digest.lower()
    return Path(data_dir) / digest[:2] / digest
