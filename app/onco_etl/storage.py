import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

PATIENT_DATA = "patient-data"


def data_dir_from_env(default: str | None = None) -> str:
    return os.getenv("ONC_DATA_DIR", default or "./data")


class LocalFileStore:
    """Canonical workbooks on local disk, one folder per bucket."""

    def __init__(self, base_dir: Optional[str] = None, bucket: str = PATIENT_DATA):
        self.root = Path(base_dir or data_dir_from_env()) / bucket

    def path_for(self, filename: str) -> Path:
        name = Path(filename).name
        if not name or name != filename:
            raise ValueError(f"invalid file name: {filename!r}")
        return self.root / name

    def write(self, filename: str, data: bytes) -> Path:
        path = self.path_for(filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)
        logger.info("wrote %s (%d bytes)", path, len(data))
        return path

    def read(self, filename: str) -> bytes:
        return self.path_for(filename).read_bytes()

    def exists(self, filename: str) -> bool:
        return self.path_for(filename).is_file()

    def delete(self, filename: str) -> bool:
        path = self.path_for(filename)
        if path.exists():
            path.unlink()
            return True
        return False

    def names(self, suffix: str = ".xlsx") -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_file() and p.name.endswith(suffix))
