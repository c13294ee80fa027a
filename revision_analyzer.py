"""
Revision Analyzer - builds the time-ordered revision list of a VSS store

For each registered job the analyzer walks the namespace from the job's
boundary project down to (and through) its root project:
- Ancestor projects above the root contribute their labels only
- Member projects and files contribute every retained action
- Files shared between projects are processed once per run
- Destroyed items are remembered across all jobs
- Exclusion patterns apply to projects, files and action targets

All jobs share one timeline, keyed by timestamp, which the changeset builder
consumes afterwards.
"""

import fnmatch
import re
import threading
import time
from bisect import bisect_left, insort
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from reporting import ProgressReporter
from vss_store import (
    RecordError,
    RecursionStatus,
    VssAction,
    VssActionType,
    VssDatabase,
    VssFile,
    VssItem,
    VssItemName,
    VssProject,
    recurse_items,
)
from work_queue import WorkItem, WorkQueue


# ============================================================================
# EXCLUSION MATCHING
# ============================================================================


class PathMatcher:
    """
    Case-insensitive glob matching over full VSS paths.

    `*` and `?` follow fnmatch rules, so `*` also spans separators:
    `*/secrets/*` matches `$/proj/secrets/key.txt`. Backslashes in patterns
    are treated as path separators.
    """

    def __init__(self, patterns: List[str]):
        self.patterns = [p.strip() for p in patterns if p and p.strip()]
        self._regexes = [
            re.compile(fnmatch.translate(self._normalize(p)), re.IGNORECASE)
            for p in self.patterns
        ]

    @staticmethod
    def _normalize(path: str) -> str:
        return path.replace("\\", VssDatabase.PROJECT_SEPARATOR)

    @classmethod
    def from_config(cls, exclude_files: Optional[str]) -> Optional["PathMatcher"]:
        """Compile a semicolon-delimited pattern list; None when empty"""
        if not exclude_files:
            return None
        patterns = [p for p in exclude_files.split(";") if p.strip()]
        if not patterns:
            return None
        return cls(patterns)

    def matches(self, path: str) -> bool:
        normalized = self._normalize(path)
        return any(regex.match(normalized) for regex in self._regexes)

    def __repr__(self) -> str:
        return f"PathMatcher({self.patterns!r})"


# ============================================================================
# INCLUSION CLASSIFICATION
# ============================================================================


class ItemClass(Enum):
    EXCLUDED = "excluded"
    IRRELEVANT = "irrelevant"
    ANCESTOR = "ancestor"
    MEMBER = "member"


def is_within(path: str, ancestor: str) -> bool:
    """True if `path` equals `ancestor` or lies below it, segment-wise"""
    path = path.casefold()
    ancestor = ancestor.casefold().rstrip(VssDatabase.PROJECT_SEPARATOR)
    return path == ancestor or path.startswith(ancestor + VssDatabase.PROJECT_SEPARATOR)


class InclusionClassifier:
    """Decides how a project relates to a job's root project"""

    def __init__(self, root_path: str, exclusion_matcher: Optional[PathMatcher] = None):
        self.root_path = root_path
        self.exclusion_matcher = exclusion_matcher

    def is_excluded(self, path: str) -> bool:
        return self.exclusion_matcher is not None and self.exclusion_matcher.matches(path)

    def classify(self, path: str) -> ItemClass:
        if self.is_excluded(path):
            return ItemClass.EXCLUDED

        if not is_within(path, self.root_path) and not is_within(self.root_path, path):
            return ItemClass.IRRELEVANT

        if len(path) < len(self.root_path):
            return ItemClass.ANCESTOR

        return ItemClass.MEMBER


# ============================================================================
# REVISIONS & TIMELINE
# ============================================================================


@dataclass(frozen=True)
class Revision:
    """One retained action, flattened for the timeline"""

    timestamp: datetime
    user: str
    item: VssItemName
    version: int
    comment: str
    action: VssAction

    def to_dict(self) -> Dict[str, Any]:
        target = self.action.name
        return {
            "timestamp": self.timestamp.isoformat(),
            "user": self.user,
            "item": self.item.logical_name,
            "physical": self.item.physical_name,
            "is_project": self.item.is_project,
            "version": self.version,
            "comment": self.comment,
            "action": self.action.type.value,
            "target": (
                {"name": target.logical_name, "physical": target.physical_name}
                if target
                else None
            ),
            "label": self.action.label,
        }


class RevisionTimeline:
    """
    Timestamp -> bucket of revisions, iterable in ascending timestamp order.

    Buckets are append-only and keep insertion order; no bucket is ever
    removed.
    """

    def __init__(self):
        self._buckets: Dict[datetime, List[Revision]] = {}
        self._keys: List[datetime] = []
        self._revision_count = 0

    def record(self, revision: Revision):
        bucket = self._buckets.get(revision.timestamp)
        if bucket is None:
            # key list first, so a failed insert leaves no orphan bucket
            insort(self._keys, revision.timestamp)
            bucket = []
            self._buckets[revision.timestamp] = bucket
        bucket.append(revision)
        self._revision_count += 1

    def get(self, timestamp: datetime) -> List[Revision]:
        return list(self._buckets.get(timestamp, ()))

    def __contains__(self, timestamp: datetime) -> bool:
        return timestamp in self._buckets

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self) -> Iterator[datetime]:
        return iter(list(self._keys))

    def items(self) -> Iterator[Tuple[datetime, List[Revision]]]:
        for key in list(self._keys):
            yield key, self._buckets[key]

    def iter_revisions(self) -> Iterator[Revision]:
        for _, bucket in self.items():
            yield from bucket

    def since(self, timestamp: datetime) -> Iterator[Tuple[datetime, List[Revision]]]:
        """Buckets at or after `timestamp`"""
        start = bisect_left(self._keys, timestamp)
        for key in self._keys[start:]:
            yield key, self._buckets[key]

    @property
    def revision_count(self) -> int:
        return self._revision_count

    @property
    def first_timestamp(self) -> Optional[datetime]:
        return self._keys[0] if self._keys else None

    @property
    def last_timestamp(self) -> Optional[datetime]:
        return self._keys[-1] if self._keys else None


class AtomicCounter:
    """Integer written by the worker thread and polled by the caller"""

    def __init__(self, value: int = 0):
        self._value = value
        self._lock = threading.Lock()

    def increment(self, amount: int = 1) -> int:
        with self._lock:
            self._value += amount
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value


def format_exception(error: BaseException) -> str:
    """Exception type and message, followed by its chain of causes"""
    parts = []
    current: Optional[BaseException] = error
    while current is not None:
        parts.append(f"{type(current).__name__}: {current}")
        current = current.__cause__ or current.__context__
    return " <- ".join(parts)


# ============================================================================
# ANALYZER
# ============================================================================


@dataclass
class ExtractionResult:
    """Revisions read from one item, and the error that stopped reading, if any"""

    revisions: List[Revision] = field(default_factory=list)
    error: Optional[RecordError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class AnalysisJob:
    root: VssProject
    boundary: VssProject
    exclude_files: Optional[str] = None
    exclusion_matcher: Optional[PathMatcher] = None
    excluded_projects: int = 0
    excluded_files: int = 0
    aborted: bool = False


class RevisionAnalyzer:
    """
    Enumerates revisions in a VSS database.

    Dedup and destroyed-item tracking, the timeline and the counters are
    shared by every job registered on one instance.
    """

    def __init__(
        self,
        work_queue: WorkQueue,
        database: VssDatabase,
        reporter: Optional[ProgressReporter] = None,
    ):
        self.work_queue = work_queue
        self.database = database
        self.reporter = reporter or work_queue.reporter
        self.root_projects: List[VssProject] = []
        self.jobs: List[AnalysisJob] = []
        self.sorted_revisions = RevisionTimeline()
        self.processed_files: Set[str] = set()
        self.destroyed_files: Set[str] = set()
        self._project_count = AtomicCounter()
        self._file_count = AtomicCounter()
        self._revision_count = AtomicCounter()
        self._exclude_files: Optional[str] = None
        self._exclusion_matcher: Optional[PathMatcher] = None

    @property
    def exclude_files(self) -> Optional[str]:
        return self._exclude_files

    @exclude_files.setter
    def exclude_files(self, value: Optional[str]):
        self._exclude_files = value
        self._exclusion_matcher = PathMatcher.from_config(value)

    @property
    def project_count(self) -> int:
        return self._project_count.value

    @property
    def file_count(self) -> int:
        return self._file_count.value

    @property
    def revision_count(self) -> int:
        return self._revision_count.value

    def is_destroyed(self, physical_name: str) -> bool:
        return physical_name in self.destroyed_files

    def add_item(self, root: VssProject, boundary: VssProject) -> AnalysisJob:
        """
        Register a job: emit `root`, walking down from `boundary` (an ancestor
        of or equal to root) to pick up inherited labels.

        Raises:
            ValueError: a project is missing or belongs to another database
        """
        if root is None:
            raise ValueError("Root project is required")
        if boundary is None:
            raise ValueError("Boundary project is required")
        if root.database is not self.database or boundary.database is not self.database:
            raise ValueError("Project database mismatch")

        job = AnalysisJob(
            root=root,
            boundary=boundary,
            exclude_files=self._exclude_files,
            exclusion_matcher=self._exclusion_matcher,
        )
        self.root_projects.append(root)
        self.jobs.append(job)

        self.work_queue.add_last(
            lambda work: self._build_revision_list(work, job),
            description=f"Building revision list for {root.path}",
            on_discard=lambda work: self._discard_job(job),
        )
        return job

    @property
    def aborted(self) -> bool:
        """True if any job stopped early or never ran; the timeline is partial"""
        return any(job.aborted for job in self.jobs)

    def _discard_job(self, job: AnalysisJob):
        job.aborted = True
        self.reporter.write_line(f"Job for {job.root.path} discarded")

    # -------- traversal ------------------------------------------------------

    def _build_revision_list(self, work: WorkItem, job: AnalysisJob):
        reporter = self.reporter
        classifier = InclusionClassifier(job.root.path, job.exclusion_matcher)

        reporter.write_section_separator()
        self.work_queue.set_status(work.description)
        reporter.write_line(work.description)
        reporter.write_line(f"Root project: {job.root.path}")
        reporter.write_line(
            f"Recurse from project: {job.boundary.path} to get inherited labels"
        )
        reporter.write_line(f"Excluded files: {job.exclude_files or ''}")

        def visit_project(project: VssProject) -> RecursionStatus:
            if self.work_queue.is_aborting:
                return RecursionStatus.ABORT

            path = project.path
            item_class = classifier.classify(path)
            if item_class == ItemClass.EXCLUDED:
                reporter.write_line(f"Excluding project {path}")
                job.excluded_projects += 1
                return RecursionStatus.SKIP
            if item_class == ItemClass.IRRELEVANT:
                reporter.write_line(f"Skipping project {path}")
                return RecursionStatus.SKIP

            if item_class == ItemClass.ANCESTOR:
                reporter.write_line(f"Parent project {path}")
            else:
                reporter.write_line(f"Processing project {path}")

            self._process_item(project, path, item_class, job.exclusion_matcher)
            self._project_count.increment()
            return RecursionStatus.CONTINUE

        def visit_file(project: VssProject, file: VssFile) -> RecursionStatus:
            if self.work_queue.is_aborting:
                return RecursionStatus.ABORT

            # labels are inherited from projects; files above the root are not migrated
            if classifier.classify(project.path) != ItemClass.MEMBER:
                return RecursionStatus.CONTINUE

            path = file.get_path(project)
            if classifier.is_excluded(path):
                reporter.write_line(f"Excluding file {path}")
                job.excluded_files += 1
                return RecursionStatus.SKIP

            # only process shared files once (projects are never shared)
            if file.physical_name not in self.processed_files:
                self.processed_files.add(file.physical_name)
                self._process_item(file, path, ItemClass.MEMBER, job.exclusion_matcher)
                self._file_count.increment()

            return RecursionStatus.CONTINUE

        start = time.time()
        status = recurse_items(job.boundary, visit_project, visit_file)
        job.aborted = status == RecursionStatus.ABORT
        elapsed = time.time() - start

        reporter.write_section_separator()
        if job.aborted:
            reporter.write_line("Analysis aborted")
        reporter.write_line(f"Analysis complete in {elapsed:.2f}s")
        reporter.write_line(
            f"Projects: {self.project_count} ({job.excluded_projects} excluded)"
        )
        reporter.write_line(f"Files: {self.file_count} ({job.excluded_files} excluded)")
        reporter.write_line(f"Revisions: {self.revision_count}")

    # -------- extraction -----------------------------------------------------

    def _process_item(
        self,
        item: VssItem,
        path: str,
        item_class: ItemClass,
        exclusion_matcher: Optional[PathMatcher],
    ):
        result = self.extract_revisions(item, path, item_class, exclusion_matcher)

        for revision in result.revisions:
            self.sorted_revisions.record(revision)
            self._revision_count.increment()

        if not result.ok:
            message = "Failed to read revisions for {} ({}): {}".format(
                path, item.physical_name, format_exception(result.error)
            )
            self.reporter.error(message)
            self.work_queue.report_error(message)

    def extract_revisions(
        self,
        item: VssItem,
        path: str,
        item_class: ItemClass,
        exclusion_matcher: Optional[PathMatcher] = None,
    ) -> ExtractionResult:
        """
        Convert an item's action log into revisions.

        Destroy targets are tracked before any filtering. Ancestors keep
        labels only. Actions whose target path is excluded are dropped.
        Reading stops at the first unreadable record; the revisions read
        so far are returned alongside the error.
        """
        result = ExtractionResult()
        item_name = item.item_name

        try:
            for vss_revision in item.revisions:
                action = vss_revision.action
                action_type = action.type

                if action.is_named and action_type == VssActionType.DESTROY:
                    # destroying a shared file only deletes that copy, so
                    # destroyed items can't be ignored outright
                    self.destroyed_files.add(action.name.physical_name)

                if item_class == ItemClass.ANCESTOR:
                    if action_type != VssActionType.LABEL:
                        continue
                    self.reporter.write_line(
                        f"Label {action.label} inherited from parent {path}"
                    )

                if action.is_named and exclusion_matcher is not None:
                    target_path = (
                        path + VssDatabase.PROJECT_SEPARATOR + action.name.logical_name
                    )
                    if exclusion_matcher.matches(target_path):
                        # project action targets an excluded file
                        continue

                result.revisions.append(
                    Revision(
                        timestamp=vss_revision.timestamp,
                        user=vss_revision.user,
                        item=item_name,
                        version=vss_revision.version,
                        comment=vss_revision.comment,
                        action=action,
                    )
                )
        except RecordError as e:
            result.error = e

        return result
