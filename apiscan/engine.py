"""Batch extraction: dispatch source files to backends and plugins on a worker pool."""

from __future__ import annotations

from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import ApiscanConfig
from .errors import ParseError, UnsupportedLanguageError
from .logging import get_logger
from .models import Route, Schema, SourceFile
from .plugins import FrameworkPlugin, get_plugin

_SEQUENTIAL_THRESHOLD = 8

_Job = Tuple[SourceFile, FrameworkPlugin, Mapping[str, str]]


@dataclass
class FileFailure:
    path: str
    error: str

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "error": self.error}


@dataclass
class ExtractionResult:
    """Routes and schemas of a batch, plus the files that contributed nothing."""

    routes: List[Route] = field(default_factory=list)
    schemas: List[Schema] = field(default_factory=list)
    empty: List[str] = field(default_factory=list)
    failed: List[FileFailure] = field(default_factory=list)

    def to_dict(self, routes: bool = True, schemas: bool = True) -> Dict[str, object]:
        payload: Dict[str, object] = {}
        if routes:
            payload["routes"] = [route.to_dict() for route in self.routes]
        if schemas:
            payload["schemas"] = [schema.to_dict() for schema in self.schemas]
        payload["empty_files"] = list(self.empty)
        payload["failed_files"] = [failure.to_dict() for failure in self.failed]
        return payload


@dataclass
class _FileOutcome:
    path: str
    routes: List[Route] = field(default_factory=list)
    schemas: List[Schema] = field(default_factory=list)
    empty: bool = False
    error: Optional[str] = None


class ExtractionEngine:
    """Runs every file of a batch through its language's plugin.

    Plugins are created once per language and shared by the workers; each
    worker parses, extracts and closes its own :class:`SourceUnit`.
    """

    def __init__(self, config: Optional[ApiscanConfig] = None, workers: Optional[int] = None) -> None:
        self.config = config or ApiscanConfig()
        self.workers = max(1, workers or self.config.workers)
        self.logger = get_logger("engine")
        self._plugins: Dict[str, FrameworkPlugin] = {}

    def plugin_for(self, language: str) -> FrameworkPlugin:
        plugin = self._plugins.get(language)
        if plugin is None:
            plugin = get_plugin(language, include_private=self.config.include_private)
            self._plugins[language] = plugin
        return plugin

    def run(self, files: Iterable[SourceFile]) -> ExtractionResult:
        """Extract routes and schemas from ``files``; results keep input order."""
        batch = list(files)
        result = ExtractionResult()
        accepted: List[Tuple[SourceFile, FrameworkPlugin]] = []
        by_language: Dict[str, List[SourceFile]] = defaultdict(list)
        for file in batch:
            try:
                plugin = self.plugin_for(file.language)
            except UnsupportedLanguageError as exc:
                self.logger.warning("Skipping %s: %s", file.path, exc)
                result.failed.append(FileFailure(file.path, str(exc)))
                continue
            accepted.append((file, plugin))
            by_language[file.language].append(file)

        prefixes = {
            language: self.plugin_for(language).prepare(language_files)
            for language, language_files in by_language.items()
        }
        jobs = [(file, plugin, prefixes[file.language]) for file, plugin in accepted]

        self.logger.debug("Extracting %d files with %d workers", len(jobs), self.workers)
        for outcome in self._execute(jobs):
            if outcome.error is not None:
                result.failed.append(FileFailure(outcome.path, outcome.error))
                continue
            if outcome.empty:
                result.empty.append(outcome.path)
            result.routes.extend(outcome.routes)
            result.schemas.extend(outcome.schemas)
        self.logger.info(
            "Extracted %d routes and %d schemas from %d files (%d empty, %d failed)",
            len(result.routes),
            len(result.schemas),
            len(batch),
            len(result.empty),
            len(result.failed),
        )
        return result

    def _execute(self, jobs: Sequence[_Job]) -> List[_FileOutcome]:
        if self.workers == 1 or len(jobs) < _SEQUENTIAL_THRESHOLD:
            return [self._extract(*job) for job in jobs]
        with ThreadPoolExecutor(max_workers=min(self.workers, len(jobs))) as executor:
            return list(executor.map(lambda job: self._extract(*job), jobs))

    def _extract(self, file: SourceFile, plugin: FrameworkPlugin, prefixes: Mapping[str, str]) -> _FileOutcome:
        try:
            with plugin.parse(file) as unit:
                routes, schemas = plugin.extract_unit(unit, prefixes)
                empty = unit.is_empty
        except ParseError as exc:
            self.logger.warning("Failed to parse %s: %s", file.path, exc.reason)
            return _FileOutcome(file.path, error=str(exc))
        except Exception as exc:  # pragma: no cover - backend bug
            self.logger.warning("Extraction failed for %s: %s", file.path, exc)
            return _FileOutcome(file.path, error=f"{type(exc).__name__}: {exc}")
        if empty:
            self.logger.debug("No facts extracted from %s", file.path)
        return _FileOutcome(file.path, routes=routes, schemas=schemas, empty=empty)


__all__ = ["ExtractionEngine", "ExtractionResult", "FileFailure"]
