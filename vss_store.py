"""
VSS Namespace Store - read-only model of a Visual SourceSafe database

Provides the navigable item tree consumed by the revision analyzer:
- Projects and files with physical identifiers and logical names
- Lazily decoded per-item action logs (records may be corrupt)
- Pre-order traversal with Continue/Skip/Abort signals
- Snapshot loading from YAML or JSON dumps of a store

Binary parsing of the on-disk records is out of scope; a snapshot dump stands
in for the physical layer.
"""

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

import yaml


# ============================================================================
# RECORD ERRORS
# ============================================================================


class RecordError(Exception):
    """A record in an item's history could not be read or decoded"""

    def __init__(self, message: str, physical_file: str = "", position: int = -1):
        super().__init__(message)
        self.physical_file = physical_file
        self.position = position

    def __str__(self) -> str:
        text = super().__str__()
        if self.physical_file:
            text += f" [{self.physical_file} @ record {self.position}]"
        return text


class RecordCrcError(RecordError):
    """Record checksum does not match its contents"""


class RecordTruncatedError(RecordError):
    """Record ends before its declared length"""


class RecordNotFoundError(RecordError):
    """Record referenced by the log does not exist"""


CORRUPTION_KINDS = {
    "crc": RecordCrcError,
    "truncated": RecordTruncatedError,
    "missing": RecordNotFoundError,
    True: RecordError,
}


# ============================================================================
# ACTIONS & REVISIONS
# ============================================================================


class VssActionType(Enum):
    LABEL = "label"
    CREATE = "create"
    DESTROY = "destroy"
    ADD = "add"
    DELETE = "delete"
    RECOVER = "recover"
    RENAME = "rename"
    MOVE_FROM = "move_from"
    MOVE_TO = "move_to"
    SHARE = "share"
    PIN = "pin"
    BRANCH = "branch"
    EDIT = "edit"
    ARCHIVE = "archive"
    RESTORE = "restore"


# Actions that reference another item by name
NAMED_ACTION_TYPES = frozenset(
    {
        VssActionType.ADD,
        VssActionType.DELETE,
        VssActionType.DESTROY,
        VssActionType.RECOVER,
        VssActionType.RENAME,
        VssActionType.MOVE_FROM,
        VssActionType.MOVE_TO,
        VssActionType.SHARE,
        VssActionType.PIN,
        VssActionType.BRANCH,
        VssActionType.ARCHIVE,
        VssActionType.RESTORE,
    }
)


@dataclass(frozen=True)
class VssItemName:
    """Logical and physical name of an item"""

    logical_name: str
    physical_name: str
    is_project: bool = False

    def __str__(self) -> str:
        return f"{self.logical_name} ({self.physical_name})"


@dataclass(frozen=True)
class VssAction:
    """
    One decoded action.

    `name` is set for destination-bearing actions only; `original_name` is the
    pre-rename logical name and `label` the text of a label action.
    """

    type: VssActionType
    name: Optional[VssItemName] = None
    original_name: Optional[str] = None
    label: Optional[str] = None

    @property
    def is_named(self) -> bool:
        return self.name is not None

    def __str__(self) -> str:
        if self.type == VssActionType.LABEL:
            return f"Label {self.label}"
        if self.type == VssActionType.RENAME and self.name:
            return f"Rename {self.original_name} to {self.name.logical_name}"
        if self.name:
            return f"{self.type.name.title()} {self.name.logical_name}"
        return self.type.name.title()


@dataclass(frozen=True)
class VssRevision:
    """One entry of an item's action log"""

    version: int
    timestamp: datetime
    user: str
    comment: str
    action: VssAction


# ============================================================================
# ITEMS
# ============================================================================


class RecursionStatus(Enum):
    CONTINUE = "continue"
    SKIP = "skip"
    ABORT = "abort"


class VssItem:
    """Base for projects and files"""

    def __init__(
        self,
        database: "VssDatabase",
        logical_name: str,
        physical_name: str,
        revision_source: Callable[[], Iterable[VssRevision]],
    ):
        self.database = database
        self.logical_name = logical_name
        self.physical_name = physical_name
        self._revision_source = revision_source

    @property
    def is_project(self) -> bool:
        return False

    @property
    def item_name(self) -> VssItemName:
        return VssItemName(self.logical_name, self.physical_name, self.is_project)

    @property
    def revisions(self) -> Iterator[VssRevision]:
        """Action log in recorded order; raises RecordError on a bad record"""
        return iter(self._revision_source())

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.logical_name} ({self.physical_name})>"


class VssFile(VssItem):
    def get_path(self, project: "VssProject") -> str:
        """Full path of this file as seen from `project` (files may be shared)"""
        return project.path + VssDatabase.PROJECT_SEPARATOR + self.logical_name


class VssProject(VssItem):
    def __init__(
        self,
        database: "VssDatabase",
        logical_name: str,
        physical_name: str,
        revision_source: Callable[[], Iterable[VssRevision]],
        parent: Optional["VssProject"] = None,
    ):
        super().__init__(database, logical_name, physical_name, revision_source)
        self.parent = parent
        self.projects: List["VssProject"] = []
        self.files: List[VssFile] = []

    @property
    def is_project(self) -> bool:
        return True

    @property
    def path(self) -> str:
        if self.parent is None:
            return self.logical_name
        return self.parent.path + VssDatabase.PROJECT_SEPARATOR + self.logical_name

    def find_project(self, logical_name: str) -> Optional["VssProject"]:
        wanted = logical_name.casefold()
        for project in self.projects:
            if project.logical_name.casefold() == wanted:
                return project
        return None


class VssDatabase:
    """A store instance; items compare to their owning database by identity"""

    ROOT_PROJECT = "$"
    PROJECT_SEPARATOR = "/"

    def __init__(self, base_path: str = ""):
        self.base_path = base_path
        self.root_project: Optional[VssProject] = None

    def get_item(self, path: str) -> VssProject:
        """Resolve a project path such as `$/proj/sub` (case-insensitive)"""
        if self.root_project is None:
            raise KeyError(path)

        parts = [p for p in path.split(self.PROJECT_SEPARATOR) if p]
        if not parts or parts[0] != self.ROOT_PROJECT:
            raise KeyError(path)

        project = self.root_project
        for part in parts[1:]:
            project = project.find_project(part)
            if project is None:
                raise KeyError(path)
        return project


# ============================================================================
# TRAVERSAL
# ============================================================================


ProjectCallback = Callable[[VssProject], RecursionStatus]
FileCallback = Callable[[VssProject, VssFile], RecursionStatus]


def recurse_items(
    project: VssProject,
    project_callback: Optional[ProjectCallback],
    file_callback: Optional[FileCallback],
) -> RecursionStatus:
    """
    Pre-order walk: the project itself, then its sub-projects, then its files.

    A Skip from the project callback prunes that subtree; an Abort anywhere
    stops the whole walk and is returned to the caller.
    """
    if project_callback is not None:
        status = project_callback(project)
        if status != RecursionStatus.CONTINUE:
            return status

    for subproject in project.projects:
        status = recurse_items(subproject, project_callback, file_callback)
        if status == RecursionStatus.ABORT:
            return status

    if file_callback is not None:
        for file in project.files:
            status = file_callback(project, file)
            if status == RecursionStatus.ABORT:
                return status

    return RecursionStatus.CONTINUE


# ============================================================================
# SNAPSHOT LOADING
# ============================================================================


def _parse_timestamp(value: Any) -> datetime:
    """Timestamps are naive; offset-qualified values are converted to UTC"""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _parse_action(record: Dict[str, Any]) -> VssAction:
    try:
        action_type = VssActionType(str(record["type"]).lower())
    except (KeyError, ValueError):
        raise ValueError(f"Unknown action type in record: {record!r}")

    name = None
    if action_type in NAMED_ACTION_TYPES:
        target = record.get("target") or {}
        name = VssItemName(
            logical_name=str(target.get("name", "")),
            physical_name=str(target.get("physical", "")),
            is_project=bool(target.get("project", False)),
        )

    return VssAction(
        type=action_type,
        name=name,
        original_name=record.get("original_name"),
        label=record.get("label"),
    )


def _revision_source(
    records: List[Dict[str, Any]], physical_name: str
) -> Callable[[], Iterator[VssRevision]]:
    """Build a lazy decoder over raw action records"""

    def decode() -> Iterator[VssRevision]:
        for position, record in enumerate(records):
            corrupt = record.get("corrupt")
            if corrupt:
                error_class = CORRUPTION_KINDS.get(corrupt, RecordError)
                raise error_class(
                    f"Unreadable revision record ({corrupt})",
                    physical_file=physical_name,
                    position=position,
                )
            try:
                revision = VssRevision(
                    version=int(record.get("version", position + 1)),
                    timestamp=_parse_timestamp(record["time"]),
                    user=str(record.get("user", "")),
                    comment=str(record.get("comment") or ""),
                    action=_parse_action(record),
                )
            except (KeyError, TypeError, ValueError) as e:
                raise RecordError(
                    f"Malformed revision record: {e}",
                    physical_file=physical_name,
                    position=position,
                ) from e
            yield revision

    return decode


class _SnapshotBuilder:
    """Turns the nested dump structure into linked items"""

    def __init__(self, database: VssDatabase):
        self.database = database
        self.file_histories: Dict[str, List[Dict[str, Any]]] = {}

    def collect_histories(self, entry: Dict[str, Any]):
        """First pass: a shared file may be listed before the entry carrying its log"""
        for child in entry.get("files") or []:
            if "actions" in child:
                self.file_histories.setdefault(str(child["physical"]), child["actions"] or [])
        for child in entry.get("projects") or []:
            self.collect_histories(child)

    def build_project(
        self, entry: Dict[str, Any], parent: Optional[VssProject]
    ) -> VssProject:
        physical = str(entry["physical"])
        project = VssProject(
            self.database,
            str(entry["name"]),
            physical,
            _revision_source(entry.get("actions") or [], physical),
            parent=parent,
        )
        for child in entry.get("projects") or []:
            project.projects.append(self.build_project(child, project))
        for child in entry.get("files") or []:
            project.files.append(self.build_file(child))
        return project

    def build_file(self, entry: Dict[str, Any]) -> VssFile:
        physical = str(entry["physical"])
        if "actions" in entry:
            records = entry["actions"] or []
        elif physical in self.file_histories:
            records = self.file_histories[physical]
        else:
            raise ValueError(f"File {entry.get('name')} ({physical}) has no history")
        return VssFile(
            self.database,
            str(entry["name"]),
            physical,
            _revision_source(records, physical),
        )


def load_snapshot_data(data: Dict[str, Any], base_path: str = "") -> VssDatabase:
    """Build a database from an already parsed snapshot mapping"""
    if not isinstance(data, dict) or "root" not in data:
        raise ValueError("Snapshot must contain a 'root' project")

    root_entry = dict(data["root"])
    root_entry.setdefault("name", VssDatabase.ROOT_PROJECT)
    if root_entry["name"] != VssDatabase.ROOT_PROJECT:
        raise ValueError(f"Root project must be named {VssDatabase.ROOT_PROJECT!r}")

    database = VssDatabase(base_path)
    builder = _SnapshotBuilder(database)
    builder.collect_histories(root_entry)
    database.root_project = builder.build_project(root_entry, None)
    return database


def load_database(snapshot_path: str) -> VssDatabase:
    """
    Load a store snapshot from YAML or JSON.

    Args:
        snapshot_path: Path to a .yaml/.yml/.json dump

    Returns:
        VssDatabase with its project tree populated
    """
    if not os.path.exists(snapshot_path):
        raise FileNotFoundError(f"Snapshot not found: {snapshot_path}")

    file_ext = os.path.splitext(snapshot_path)[1].lower()

    with open(snapshot_path, "r", encoding="utf-8") as f:
        if file_ext in [".yaml", ".yml"]:
            data = yaml.safe_load(f)
        elif file_ext == ".json":
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported snapshot format: {file_ext}")

    return load_snapshot_data(data, os.path.abspath(snapshot_path))
