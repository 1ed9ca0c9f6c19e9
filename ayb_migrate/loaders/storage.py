"""Local file storage in the AYB layout: <root>/<bucket>/<path>."""

import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_PATH = os.path.join(".", "ayb_storage")


def normalize_bucket_name(name: str) -> str:
    """
    Convert a Supabase or Cloud Storage bucket name to an AYB bucket name.

    Lowercase alphanumerics, "-" and "_" are kept; "." and " " become "-";
    anything else is dropped. Capped at 63 characters, "default" when empty.
    """
    chars = []
    for c in name.lower():
        if ("a" <= c <= "z") or ("0" <= c <= "9") or c in "-_":
            chars.append(c)
        elif c in ". ":
            chars.append("-")
    result = "".join(chars)[:63]
    return result or "default"


class LocalStorageWriter:
    """Copies files into the AYB local storage directory."""

    def __init__(self, root: str = ""):
        self.root = Path(root or DEFAULT_STORAGE_PATH)

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def destination(self, bucket: str, relative_path: str) -> Path:
        """
        Resolve the target path for a file.

        Raises:
            ValueError: if the path escapes the bucket directory
        """
        bucket_dir = (self.root / bucket).resolve()
        target = (bucket_dir / relative_path).resolve()
        if target != bucket_dir and bucket_dir not in target.parents:
            raise ValueError(f"refusing path outside bucket {bucket}: {relative_path}")
        if target == bucket_dir:
            raise ValueError(f"empty object path in bucket {bucket}")
        return target

    def copy(self, source_path: str, bucket: str, relative_path: str) -> int:
        """
        Copy one file into <root>/<bucket>/<relative_path>.

        Returns:
            Number of bytes copied
        """
        target = self.destination(bucket, relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source_path, target)
        size = target.stat().st_size
        logger.debug(f"Copied {source_path} -> {target} ({size} bytes)")
        return size
