"""Repository walking: classify files by language tag and read them as SourceFile inputs."""

from __future__ import annotations

import os
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from .config import ApiscanConfig, load_config
from .logging import get_logger
from .models import SourceFile
from .parsers import language_for_path

logger = get_logger("scanner")

_EXCLUDED_DIRS = {
    ".git",
    ".hg",
    ".svn",
    ".venv",
    "venv",
    "node_modules",
    "__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    ".idea",
    "target",
    "_build",
    "deps",
    ".stack-work",
    "dist",
}

_MAX_FILE_BYTES = 2 * 1024 * 1024


@dataclass
class IgnoreRule:
    """An exclusion pattern from .gitignore or ``exclude_paths``."""

    pattern: str
    directory_only: bool
    anchored: bool
    negate: bool

    def matches(self, rel_path: str, is_dir: bool) -> bool:
        if not self.pattern:
            return False
        if self.directory_only and not is_dir:
            return False
        if self.anchored or "/" in self.pattern:
            return fnmatchcase(rel_path, self.pattern)
        return any(fnmatchcase(part, self.pattern) for part in rel_path.split("/"))


def build_ignore_rule(pattern: str, negate: bool = False) -> Optional[IgnoreRule]:
    pattern = pattern.strip()
    if not pattern:
        return None
    directory_only = pattern.endswith("/")
    pattern = pattern.rstrip("/")
    anchored = pattern.startswith("/")
    return IgnoreRule(pattern=pattern.lstrip("/"), directory_only=directory_only, anchored=anchored, negate=negate)


def _parse_gitignore(path: Path) -> List[IgnoreRule]:
    if not path.exists():
        return []
    rules: List[IgnoreRule] = []
    for raw_line in path.read_text(encoding="utf-8", errors="ignore").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        negate = line.startswith("!")
        rule = build_ignore_rule(line[1:] if negate else line, negate=negate)
        if rule is not None:
            rules.append(rule)
    return rules


def _should_ignore(rel_path: str, is_dir: bool, rules: Sequence[IgnoreRule]) -> bool:
    ignored = False
    for rule in rules:
        if rule.matches(rel_path, is_dir):
            ignored = not rule.negate
    return ignored


class RepoScanner:
    """Walks a repository and yields the files some backend can read."""

    def __init__(self, config: Optional[ApiscanConfig] = None) -> None:
        self.config = config

    def scan(self, root: str) -> List[SourceFile]:
        """Return ``SourceFile`` records for every recognized file under ``root``."""
        root_path = Path(root).expanduser().resolve()
        if not root_path.exists():
            raise FileNotFoundError(f"Repository path not found: {root}")
        if root_path.is_file():
            file = self._read(root_path, root_path.name)
            return [file] if file is not None else []
        config = self.config or load_config(root_path)
        rules = _parse_gitignore(root_path / ".gitignore")
        rules.extend(rule for rule in map(build_ignore_rule, config.exclude_paths) if rule is not None)

        files: List[SourceFile] = []
        for path in self._iter_files(root_path, rules):
            rel_path = path.relative_to(root_path).as_posix()
            language = language_for_path(rel_path)
            if language is None or not config.allows(language):
                continue
            file = self._read(path, rel_path, language)
            if file is not None:
                files.append(file)
        logger.debug("Scanner discovered %d source files under %s", len(files), root_path)
        return files

    @staticmethod
    def _iter_files(root: Path, rules: Sequence[IgnoreRule]) -> Iterator[Path]:
        for dirpath, dirnames, filenames in os.walk(root):
            current_dir = Path(dirpath)
            rel_dir = current_dir.relative_to(root).as_posix() if current_dir != root else ""
            kept = []
            for name in sorted(dirnames):
                rel_path = f"{rel_dir}/{name}" if rel_dir else name
                if name in _EXCLUDED_DIRS or _should_ignore(rel_path, True, rules):
                    continue
                kept.append(name)
            dirnames[:] = kept
            for filename in sorted(filenames):
                rel_path = f"{rel_dir}/{filename}" if rel_dir else filename
                if not _should_ignore(rel_path, False, rules):
                    yield current_dir / filename

    @staticmethod
    def _read(path: Path, rel_path: str, language: Optional[str] = None) -> Optional[SourceFile]:
        language = language or language_for_path(rel_path)
        if language is None:
            return None
        try:
            size = path.stat().st_size
            if size > _MAX_FILE_BYTES:
                logger.debug("Skipping %s: %d bytes", rel_path, size)
                return None
            content = path.read_bytes()
        except OSError as exc:
            logger.warning("Cannot read %s: %s", rel_path, exc)
            return None
        return SourceFile(path=rel_path, language=language, content=content)


__all__ = ["IgnoreRule", "RepoScanner", "build_ignore_rule"]
