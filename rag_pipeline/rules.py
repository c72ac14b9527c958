"""URL rule storage, caching and pipeline selection."""
import json
import logging
import os
import re
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Pattern, Tuple

from .errors import ConfigurationError
from .models import (
    MatchResult,
    PipelineDefinition,
    PipelineInfo,
    SelectionReport,
    UrlRule,
    utcnow,
)

logger = logging.getLogger(__name__)

# Packaged pipelines and rules
DEFAULT_RULES_FILE = Path(__file__).parent / "data" / "pipelines.json"


class RuleRepository:
    """
    Durable store for pipeline definitions and URL rules.

    Backed by a JSON file ``{"pipelines": [...], "rules": [...]}``. Without
    a writable path the packaged defaults are loaded and changes stay in
    memory.
    """

    def __init__(self, path: Optional[Path] = None):
        """
        Initialize rule repository.

        Args:
            path: JSON file to load from and persist to
        """
        self.path = Path(path) if path else None
        self._pipelines: Dict[str, PipelineDefinition] = {}
        self._rules: List[UrlRule] = []
        self._lock = threading.Lock()
        self._loaded = False

    @classmethod
    def from_data(
        cls,
        pipelines: List[PipelineDefinition],
        rules: Optional[List[UrlRule]] = None,
    ) -> "RuleRepository":
        """Build an in-memory repository (no file persistence)."""
        repo = cls()
        repo._pipelines = {p.name: p for p in pipelines}
        repo._rules = list(rules or [])
        repo._loaded = True
        return repo

    def load(self) -> None:
        """Load pipelines and rules from the backing file."""
        source = self.path if self.path and self.path.exists() else DEFAULT_RULES_FILE

        if self.path and not self.path.exists():
            logger.warning(f"Rules file not found: {self.path}, using packaged defaults")

        with open(source, "r", encoding="utf-8") as f:
            data = json.load(f)

        pipelines = {}
        for item in data.get("pipelines", []):
            pipeline = PipelineDefinition(**item)
            pipelines[pipeline.name] = pipeline

        rules = [UrlRule(**item) for item in data.get("rules", [])]

        with self._lock:
            self._pipelines = pipelines
            self._rules = rules
            self._loaded = True

        logger.info(f"Loaded {len(pipelines)} pipelines and {len(rules)} URL rules from {source}")

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def get_pipeline(self, name: str) -> Optional[PipelineDefinition]:
        """Get a pipeline definition by name."""
        self._ensure_loaded()
        return self._pipelines.get(name)

    def list_pipelines(self) -> List[PipelineDefinition]:
        """All pipeline definitions, sorted by name."""
        self._ensure_loaded()
        return sorted(self._pipelines.values(), key=lambda p: p.name)

    def list_rules(self) -> List[UrlRule]:
        """All rules in insertion order."""
        self._ensure_loaded()
        with self._lock:
            return list(self._rules)

    def save_pipeline(self, pipeline: PipelineDefinition) -> PipelineDefinition:
        """Insert or replace a pipeline definition."""
        self._ensure_loaded()
        with self._lock:
            self._pipelines[pipeline.name] = pipeline
            self._persist()
        return pipeline

    def upsert_rule(self, pipeline_id: str, pattern: str, priority: int, active: bool) -> UrlRule:
        """
        Insert or update a rule keyed by (pipeline_id, pattern).

        An updated rule keeps its original position and creation time.
        """
        self._ensure_loaded()
        with self._lock:
            for idx, rule in enumerate(self._rules):
                if rule.pipeline_id == pipeline_id and rule.pattern == pattern:
                    updated = rule.model_copy(update={"priority": priority, "active": active})
                    self._rules[idx] = updated
                    logger.info(f"Updated rule: {pattern} -> {pipeline_id}")
                    break
            else:
                updated = UrlRule(
                    pattern=pattern,
                    pipeline_id=pipeline_id,
                    priority=priority,
                    active=active,
                    created_at=utcnow(),
                )
                self._rules.append(updated)
                logger.info(f"Created rule: {pattern} -> {pipeline_id}")

            self._persist()

        return updated

    def _persist(self) -> None:
        """Write the current state to the backing file (caller holds the lock)."""
        if not self.path:
            return

        data = {
            "pipelines": [p.model_dump(mode="json") for p in self._pipelines.values()],
            "rules": [r.model_dump(mode="json") for r in self._rules],
        }

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


@dataclass(frozen=True)
class CompiledRule:
    """Active rule with its compiled pattern."""

    rule: UrlRule
    regex: Pattern
    sequence: int

    @property
    def pipeline_id(self) -> str:
        return self.rule.pipeline_id

    @property
    def priority(self) -> int:
        return self.rule.priority

    def sort_key(self) -> Tuple[int, float, int]:
        # Higher priority first; equal priority: most recently added first
        return (self.rule.priority, self.rule.created_at.timestamp(), self.sequence)

    def matches(self, url: str) -> bool:
        return self.regex.search(url) is not None


@dataclass(frozen=True)
class RuleSnapshot:
    """Immutable view of the rules and pipelines at one point in time."""

    rules: Tuple[CompiledRule, ...]
    pipelines: Dict[str, PipelineDefinition]
    loaded_at: float


def compile_pattern(pattern: str) -> Pattern:
    """
    Compile a URL pattern (case-insensitive).

    Raises:
        ConfigurationError: pattern is not a valid regular expression
    """
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise ConfigurationError(f"Invalid URL pattern '{pattern}': {e}") from e


class RuleCache:
    """
    Read-mostly cache of compiled rules.

    Readers take the current snapshot without locking; ``refresh`` builds a
    new snapshot and swaps it in, ``invalidate`` drops it.
    """

    def __init__(
        self,
        repository: RuleRepository,
        ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize rule cache.

        Args:
            repository: Durable rule store
            ttl: Seconds before a snapshot is considered stale
            clock: Monotonic clock (injectable for tests)
        """
        self.repository = repository
        self.ttl = ttl
        self.clock = clock
        self._snapshot: Optional[RuleSnapshot] = None
        self._refresh_lock = threading.Lock()

    def get(self) -> RuleSnapshot:
        """Current snapshot, refreshed if stale or invalidated."""
        snapshot = self._snapshot
        if snapshot is None or self.clock() - snapshot.loaded_at >= self.ttl:
            return self.refresh()
        return snapshot

    def refresh(self) -> RuleSnapshot:
        """Rebuild the snapshot from the repository."""
        with self._refresh_lock:
            pipelines = {p.name: p for p in self.repository.list_pipelines() if p.active}

            compiled = []
            for seq, rule in enumerate(self.repository.list_rules()):
                if not rule.active or rule.pipeline_id not in pipelines:
                    continue
                compiled.append(CompiledRule(rule=rule, regex=compile_pattern(rule.pattern), sequence=seq))

            compiled.sort(key=lambda c: c.sort_key(), reverse=True)

            snapshot = RuleSnapshot(
                rules=tuple(compiled),
                pipelines=pipelines,
                loaded_at=self.clock(),
            )
            self._snapshot = snapshot

        logger.debug(f"Refreshed URL rule cache with {len(compiled)} rules")
        return snapshot

    def invalidate(self) -> None:
        """Drop the snapshot; the next read reloads."""
        self._snapshot = None


def describe_match(pattern: str) -> str:
    """Heuristic label for what kind of source a pattern targets."""
    lowered = pattern.lower()
    if "github" in lowered:
        return "GitHub Repository"
    if "youtube" in lowered or "youtu" in lowered:
        return "YouTube Video"
    if "arxiv" in lowered:
        return "Academic Paper"
    if "news" in lowered or "blog" in lowered:
        return "News/Blog Article"
    return "Generic Pattern"


class PipelineSelector:
    """Picks the pipeline for a URL by prioritized pattern matching."""

    def __init__(
        self,
        repository: RuleRepository,
        cache: Optional[RuleCache] = None,
        default_pipeline: str = "default",
    ):
        """
        Initialize pipeline selector.

        Args:
            repository: Durable rule store
            cache: Rule cache (one over ``repository`` is created if omitted)
            default_pipeline: Pipeline used when no rule matches
        """
        self.repository = repository
        self.cache = cache or RuleCache(repository)
        self.default_pipeline = default_pipeline

    def validate(self) -> None:
        """
        Startup check: rules compile and the default pipeline exists.

        Raises:
            ConfigurationError: on any problem
        """
        snapshot = self.cache.refresh()
        self._default(snapshot)

    def _default(self, snapshot: RuleSnapshot) -> PipelineDefinition:
        pipeline = snapshot.pipelines.get(self.default_pipeline)
        if pipeline is None:
            raise ConfigurationError(
                f"Default pipeline '{self.default_pipeline}' not found. "
                "Please ensure the rules file defines it and marks it active."
            )
        return pipeline

    def _matches(self, url: str, snapshot: RuleSnapshot) -> List[CompiledRule]:
        # Snapshot rules are already ordered by priority, then recency
        return [rule for rule in snapshot.rules if rule.matches(url)]

    def select_pipeline(self, url: str) -> PipelineDefinition:
        """
        Select the pipeline for a URL.

        Args:
            url: URL to route

        Returns:
            Highest-priority matching pipeline, or the default pipeline

        Raises:
            ConfigurationError: default pipeline is missing
        """
        snapshot = self.cache.get()
        matches = self._matches(url, snapshot)

        if matches:
            best = matches[0]
            logger.info(
                f"Selected pipeline '{best.pipeline_id}' (priority {best.priority}) for URL: {url}"
            )
            return snapshot.pipelines[best.pipeline_id]

        logger.info(f"No rule matched, using default pipeline for URL: {url}")
        return self._default(snapshot)

    def test_selection(self, url: str) -> SelectionReport:
        """Explain which pipeline a URL would get, without running anything."""
        snapshot = self.cache.get()
        matches = self._matches(url, snapshot)

        if matches:
            selected = snapshot.pipelines[matches[0].pipeline_id]
            reason = f"Best match based on priority {matches[0].priority}"
        else:
            selected = self._default(snapshot)
            reason = "Default pipeline (no pattern matches)"

        return SelectionReport(
            url=url,
            selected=selected,
            matches=[
                MatchResult(
                    pipeline_id=m.pipeline_id,
                    pattern=m.rule.pattern,
                    priority=m.priority,
                    match_type=describe_match(m.rule.pattern),
                )
                for m in matches
            ],
            reason=reason,
        )

    def add_or_update_rule(
        self,
        pipeline_id: str,
        pattern: str,
        priority: int,
        active: bool = True,
    ) -> UrlRule:
        """
        Register a URL rule.

        The target pipeline must exist and the pattern must compile before
        the rule is accepted.

        Raises:
            ConfigurationError: unknown pipeline or invalid pattern
        """
        if self.repository.get_pipeline(pipeline_id) is None:
            raise ConfigurationError(f"Pipeline '{pipeline_id}' not found")

        compile_pattern(pattern)

        rule = self.repository.upsert_rule(pipeline_id, pattern, priority, active)
        self.cache.invalidate()
        return rule

    def get_pipeline(self, name: str) -> Optional[PipelineDefinition]:
        return self.repository.get_pipeline(name)

    def list_pipelines(self) -> List[PipelineInfo]:
        """Active pipelines with their active URL patterns, highest priority first."""
        snapshot = self.cache.get()

        infos = []
        for name in sorted(snapshot.pipelines):
            pipeline = snapshot.pipelines[name]
            infos.append(PipelineInfo(
                name=pipeline.name,
                description=pipeline.description,
                active=pipeline.active,
                stages=list(pipeline.stages),
                url_patterns=[
                    MatchResult(
                        pipeline_id=r.pipeline_id,
                        pattern=r.rule.pattern,
                        priority=r.priority,
                        match_type=describe_match(r.rule.pattern),
                    )
                    for r in snapshot.rules
                    if r.pipeline_id == name
                ],
            ))
        return infos
