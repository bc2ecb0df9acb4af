"""Helper utilities for constructing temporary repositories in tests."""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import List, Mapping

from apiscan.models import SourceFile
from apiscan.repo_scanner import RepoScanner


def source(path: str, language: str, content: str) -> SourceFile:
    """Build an in-memory ``SourceFile`` from an indented snippet."""
    return SourceFile(path=path, language=language, content=dedent(content).encode("utf-8"))


def dedent(content: str) -> str:
    return textwrap.dedent(content).lstrip("\n")


class RepoBuilder:
    """Utility for writing files into a throwaway repository and rescanning it."""

    def __init__(self, tmp_path: Path) -> None:
        self.root = tmp_path / "repo"
        self.root.mkdir()

    def write(self, files: Mapping[str, str]) -> None:
        """Write `path -> contents` entries into the repository."""
        for relative, content in files.items():
            path = self.root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(dedent(content), encoding="utf-8")

    def scan(self) -> List[SourceFile]:
        """Return the source files the scanner picks up."""
        return RepoScanner().scan(str(self.root))

    def path(self) -> Path:
        """Return the repository root path."""
        return self.root


__all__ = ["RepoBuilder", "dedent", "source"]
