"""Tests for the namespace store model, traversal and snapshot loading"""

import json
from datetime import datetime

import pytest
import yaml

from vss_store import (
    RecordCrcError,
    RecordError,
    RecordNotFoundError,
    RecordTruncatedError,
    RecursionStatus,
    VssAction,
    VssActionType,
    VssDatabase,
    VssItemName,
    load_database,
    load_snapshot_data,
    recurse_items,
)


# ============================================================================
# ITEM TREE
# ============================================================================


class TestItemTree:
    def test_paths(self, database):
        sub = database.get_item("$/proj/sub")
        assert sub.path == "$/proj/sub"
        assert sub.is_project
        assert sub.files[0].get_path(sub) == "$/proj/sub/main.c"
        assert database.root_project.path == "$"

    def test_get_item_case_insensitive(self, database):
        assert database.get_item("$/PROJ/Sub").physical_name == "CAAAAAAA"
        assert database.get_item("$/proj/sub/").physical_name == "CAAAAAAA"

    def test_get_item_unknown(self, database):
        with pytest.raises(KeyError):
            database.get_item("$/nope")
        with pytest.raises(KeyError):
            database.get_item("proj")

    def test_items_know_their_database(self, database):
        assert database.get_item("$/other").database is database
        assert database.get_item("$/other").files[0].database is database

    def test_item_name(self, database):
        name = database.get_item("$/proj").item_name
        assert name == VssItemName("proj", "BAAAAAAA", True)
        assert str(name) == "proj (BAAAAAAA)"

    def test_shared_file_reuses_history(self, database):
        first = database.get_item("$/proj/sub").files[1]
        shared = database.get_item("$/other").files[0]
        assert shared.physical_name == first.physical_name
        assert [r.version for r in shared.revisions] == [1, 2]


# ============================================================================
# ACTION LOGS
# ============================================================================


class TestRevisions:
    def test_decoded_fields(self, database):
        main_c = database.get_item("$/proj/sub").files[0]
        revisions = list(main_c.revisions)

        assert [r.action.type for r in revisions] == [
            VssActionType.CREATE,
            VssActionType.EDIT,
            VssActionType.EDIT,
        ]
        assert revisions[1].comment == "fix"
        assert revisions[1].timestamp == datetime(2009, 3, 4, 9, 0)
        assert revisions[2].user == "alice"

    def test_named_actions(self, database):
        actions = [r.action for r in database.get_item("$/proj").revisions]
        rename = actions[4]

        assert rename.type == VssActionType.RENAME
        assert rename.original_name == "doc"
        assert rename.name == VssItemName("docs", "KAAAAAAA", True)
        assert str(rename) == "Rename doc to docs"
        assert actions[5].name is None
        assert str(actions[5]) == "Label v1.0"

    def test_action_str(self):
        assert str(VssAction(VssActionType.EDIT)) == "Edit"
        add = VssAction(VssActionType.ADD, name=VssItemName("a.txt", "BAAAAAAA"))
        assert str(add) == "Add a.txt"
        assert add.is_named

    @pytest.mark.parametrize(
        "kind,error_class",
        [
            ("crc", RecordCrcError),
            ("truncated", RecordTruncatedError),
            ("missing", RecordNotFoundError),
            (True, RecordError),
        ],
    )
    def test_corrupt_record_raises_lazily(self, kind, error_class):
        database = load_snapshot_data({
            "root": {
                "physical": "AAAAAAAA",
                "actions": [
                    {"type": "label", "time": "2009-01-01T00:00:00", "label": "x"},
                    {"corrupt": kind},
                ],
            }
        })
        revisions = database.root_project.revisions

        assert next(revisions).action.label == "x"
        with pytest.raises(error_class) as excinfo:
            next(revisions)
        assert excinfo.value.physical_file == "AAAAAAAA"
        assert excinfo.value.position == 1

    def test_offset_timestamps_normalized_to_utc(self):
        database = load_snapshot_data({
            "root": {
                "physical": "AAAAAAAA",
                "actions": [
                    {"type": "label", "time": "2009-03-05T09:00:00Z", "label": "a"},
                    {"type": "label", "time": "2009-03-05T11:00:00+02:00", "label": "b"},
                    {"type": "label", "time": "2009-03-05T10:00:00", "label": "c"},
                ],
            }
        })

        stamps = [r.timestamp for r in database.root_project.revisions]
        assert stamps == [datetime(2009, 3, 5, 9, 0)] * 2 + [datetime(2009, 3, 5, 10, 0)]
        assert all(stamp.tzinfo is None for stamp in stamps)

    def test_malformed_record_is_record_error(self):
        database = load_snapshot_data({
            "root": {
                "physical": "AAAAAAAA",
                "actions": [{"type": "teleport", "time": "2009-01-01T00:00:00"}],
            }
        })
        with pytest.raises(RecordError, match="Malformed"):
            list(database.root_project.revisions)


# ============================================================================
# TRAVERSAL
# ============================================================================


class TestRecurseItems:
    def test_pre_order(self, database):
        visited = []

        def on_project(project):
            visited.append(project.path)
            return RecursionStatus.CONTINUE

        def on_file(project, file):
            visited.append(file.get_path(project))
            return RecursionStatus.CONTINUE

        status = recurse_items(database.get_item("$/proj"), on_project, on_file)

        assert status == RecursionStatus.CONTINUE
        assert visited == [
            "$/proj",
            "$/proj/secrets",
            "$/proj/secrets/key.txt",
            "$/proj/sub",
            "$/proj/sub/main.c",
            "$/proj/sub/shared.h",
            "$/proj/readme.txt",
        ]

    def test_skip_prunes_subtree(self, database):
        visited = []

        def on_project(project):
            visited.append(project.path)
            if project.logical_name == "secrets":
                return RecursionStatus.SKIP
            return RecursionStatus.CONTINUE

        recurse_items(
            database.get_item("$/proj"),
            on_project,
            lambda project, file: visited.append(file.logical_name)
            or RecursionStatus.CONTINUE,
        )

        assert "key.txt" not in visited
        assert "main.c" in visited

    def test_abort_propagates(self, database):
        visited = []

        def on_file(project, file):
            visited.append(file.logical_name)
            return RecursionStatus.ABORT

        status = recurse_items(
            database.root_project, lambda p: RecursionStatus.CONTINUE, on_file
        )

        assert status == RecursionStatus.ABORT
        assert visited == ["key.txt"]


# ============================================================================
# SNAPSHOT LOADING
# ============================================================================


class TestLoadDatabase:
    def test_load_yaml(self, snapshot_file):
        database = load_database(str(snapshot_file))
        assert isinstance(database, VssDatabase)
        assert database.base_path == str(snapshot_file)
        assert database.get_item("$/proj/sub").files[0].logical_name == "main.c"

    def test_load_json(self, tmp_path, sample_store):
        path = tmp_path / "store.json"
        path.write_text(json.dumps(sample_store), encoding="utf-8")

        database = load_database(str(path))
        assert len(database.root_project.projects) == 3

    def test_yaml_native_timestamps(self, tmp_path):
        path = tmp_path / "store.yml"
        path.write_text(
            yaml.safe_dump({
                "root": {
                    "physical": "AAAAAAAA",
                    "actions": [
                        {"type": "label", "time": datetime(2009, 5, 1, 8, 30), "label": "L"}
                    ],
                }
            }),
            encoding="utf-8",
        )

        revision = next(load_database(str(path)).root_project.revisions)
        assert revision.timestamp == datetime(2009, 5, 1, 8, 30)

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_database("nonexistent.yaml")

    def test_unsupported_format(self, tmp_path):
        bad = tmp_path / "store.txt"
        bad.touch()
        with pytest.raises(ValueError):
            load_database(str(bad))

    def test_missing_root(self):
        with pytest.raises(ValueError):
            load_snapshot_data({"projects": []})

    def test_root_must_be_dollar(self):
        with pytest.raises(ValueError):
            load_snapshot_data({"root": {"name": "top", "physical": "AAAAAAAA"}})

    def test_shared_file_without_history(self):
        with pytest.raises(ValueError, match="no history"):
            load_snapshot_data({
                "root": {
                    "physical": "AAAAAAAA",
                    "files": [{"name": "a.txt", "physical": "BAAAAAAA"}],
                }
            })

    def test_shared_file_listed_before_its_history(self, sample_store):
        projects = sample_store["root"]["projects"]
        projects.insert(0, projects.pop())

        database = load_snapshot_data(sample_store)

        shared = database.get_item("$/other").files[0]
        assert shared.physical_name == "HAAAAAAA"
        assert [r.version for r in shared.revisions] == [1, 2]
