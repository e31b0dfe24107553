"""Source path filtering rules."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Iterable

from repo_index.core.errors import FilterConfigError
from repo_index.models.entities import Source


def normalize_path(path: str) -> str:
    """Return a crawler path as a relative POSIX path."""
    normalized = path.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.lstrip("/")


@dataclass(frozen=True, slots=True)
class PathFilter:
    """Compiled allowed-extension / allowed-dir / ignored-dir rules of a source."""

    allowed_ext: tuple[str, ...]
    allowed_dirs: tuple[str, ...]
    ignored_dirs: tuple[str, ...]

    @classmethod
    def from_rules(
        cls,
        allowed_ext: Iterable[str],
        allowed_dirs: Iterable[str],
        ignored_dirs: Iterable[str],
    ) -> "PathFilter":
        return cls(
            allowed_ext=tuple(sorted(_validate_ext(ext) for ext in allowed_ext)),
            allowed_dirs=tuple(sorted(_validate_dir(d, "allowed_dirs") for d in allowed_dirs)),
            ignored_dirs=tuple(sorted(_validate_dir(d, "ignored_dirs") for d in ignored_dirs)),
        )

    @classmethod
    def from_source(cls, source: Source) -> "PathFilter":
        return cls.from_rules(source.allowed_ext, source.allowed_dirs, source.ignored_dirs)

    def matches(self, path: str) -> bool:
        # An empty allowed set places no restriction; ignored dirs always win.
        if self.allowed_ext and not any(path.endswith(ext) for ext in self.allowed_ext):
            return False
        if self.allowed_dirs and not any(_is_under(path, d) for d in self.allowed_dirs):
            return False
        return not any(_is_under(path, d) for d in self.ignored_dirs)


def _validate_ext(ext: object) -> str:
    if not isinstance(ext, str) or not ext.strip():
        raise FilterConfigError(f"allowed_ext entry {ext!r} is empty")
    if "/" in ext or "\\" in ext:
        raise FilterConfigError(f"allowed_ext entry {ext!r} must not contain a path separator")
    return ext.strip()


def _validate_dir(value: object, field: str) -> str:
    if not isinstance(value, str) or not value.strip().strip("/"):
        raise FilterConfigError(f"{field} entry {value!r} is empty")
    cleaned = value.strip()
    if cleaned.startswith("/"):
        raise FilterConfigError(f"{field} entry {value!r} must be relative to the repository root")
    if ".." in PurePosixPath(cleaned).parts:
        raise FilterConfigError(f"{field} entry {value!r} must not contain '..'")
    return normalize_path(cleaned).rstrip("/")


def _is_under(path: str, directory: str) -> bool:
    return path == directory or path.startswith(directory + "/")


__all__ = ["PathFilter", "normalize_path"]
