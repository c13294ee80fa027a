import copy

import pytest
import yaml

from reporting import ProgressReporter
from revision_analyzer import RevisionAnalyzer
from vss_store import load_snapshot_data
from work_queue import WorkQueue


T1 = "2009-03-01T09:00:00"
T2 = "2009-03-02T09:00:00"
T3 = "2009-03-03T09:00:00"
T4 = "2009-03-04T09:00:00"
T5 = "2009-03-05T09:00:00"
T6 = "2009-03-06T09:00:00"
T7 = "2009-03-07T09:00:00"
T8 = "2009-03-08T09:00:00"
T9 = "2009-03-09T09:00:00"


def target(name, physical, project=False):
    return {"name": name, "physical": physical, "project": project}


# $
# +-- proj              BAAAAAAA  (label v1.0, rename, destroy of old.txt)
# |   +-- secrets       EAAAAAAA
# |   |   +-- key.txt   FAAAAAAA
# |   +-- sub           CAAAAAAA  (label sub-1)
# |   |   +-- main.c    GAAAAAAA
# |   |   +-- shared.h  HAAAAAAA
# |   +-- readme.txt    DAAAAAAA
# +-- projX             MAAAAAAA
# |   +-- extra.txt     NAAAAAAA
# +-- other             IAAAAAAA
#     +-- shared.h      HAAAAAAA  (shared with $/proj/sub)
#     +-- notes.txt     JAAAAAAA
SAMPLE_STORE = {
    "root": {
        "name": "$",
        "physical": "AAAAAAAA",
        "actions": [
            {"type": "add", "time": T1, "user": "admin", "target": target("proj", "BAAAAAAA", True)},
            {"type": "add", "time": T1, "user": "admin", "target": target("projX", "MAAAAAAA", True)},
            {"type": "add", "time": T1, "user": "admin", "target": target("other", "IAAAAAAA", True)},
            {"type": "label", "time": T9, "user": "admin", "label": "Global", "comment": "all"},
        ],
        "projects": [
            {
                "name": "proj",
                "physical": "BAAAAAAA",
                "actions": [
                    {"type": "add", "time": T2, "user": "alice", "target": target("readme.txt", "DAAAAAAA")},
                    {"type": "add", "time": T2, "user": "alice", "target": target("secrets", "EAAAAAAA", True)},
                    {"type": "add", "time": T2, "user": "alice", "target": target("sub", "CAAAAAAA", True)},
                    {"type": "destroy", "time": T6, "user": "bob", "target": target("old.txt", "LAAAAAAA")},
                    {
                        "type": "rename",
                        "time": T7,
                        "user": "bob",
                        "original_name": "doc",
                        "target": target("docs", "KAAAAAAA", True),
                    },
                    {"type": "label", "time": T8, "user": "alice", "label": "v1.0", "comment": "release"},
                ],
                "projects": [
                    {
                        "name": "secrets",
                        "physical": "EAAAAAAA",
                        "actions": [
                            {"type": "add", "time": T3, "user": "alice", "target": target("key.txt", "FAAAAAAA")},
                        ],
                        "files": [
                            {
                                "name": "key.txt",
                                "physical": "FAAAAAAA",
                                "actions": [{"type": "create", "time": T3, "user": "alice"}],
                            }
                        ],
                    },
                    {
                        "name": "sub",
                        "physical": "CAAAAAAA",
                        "actions": [
                            {"type": "add", "time": T3, "user": "bob", "target": target("main.c", "GAAAAAAA")},
                            {"type": "add", "time": T3, "user": "bob", "target": target("shared.h", "HAAAAAAA")},
                            {"type": "label", "time": T8, "user": "bob", "label": "sub-1"},
                        ],
                        "files": [
                            {
                                "name": "main.c",
                                "physical": "GAAAAAAA",
                                "actions": [
                                    {"type": "create", "time": T3, "user": "bob", "version": 1},
                                    {"type": "edit", "time": T4, "user": "bob", "version": 2, "comment": "fix"},
                                    {"type": "edit", "time": T5, "user": "alice", "version": 3},
                                ],
                            },
                            {
                                "name": "shared.h",
                                "physical": "HAAAAAAA",
                                "actions": [
                                    {"type": "create", "time": T3, "user": "bob", "version": 1},
                                    {"type": "edit", "time": T4, "user": "bob", "version": 2},
                                ],
                            },
                        ],
                    },
                ],
                "files": [
                    {
                        "name": "readme.txt",
                        "physical": "DAAAAAAA",
                        "actions": [
                            {"type": "create", "time": T2, "user": "alice", "version": 1},
                            {"type": "edit", "time": T3, "user": "bob", "version": 2, "comment": "typo"},
                        ],
                    }
                ],
            },
            {
                "name": "projX",
                "physical": "MAAAAAAA",
                "actions": [
                    {"type": "add", "time": T2, "user": "carol", "target": target("extra.txt", "NAAAAAAA")},
                ],
                "files": [
                    {
                        "name": "extra.txt",
                        "physical": "NAAAAAAA",
                        "actions": [{"type": "create", "time": T2, "user": "carol"}],
                    }
                ],
            },
            {
                "name": "other",
                "physical": "IAAAAAAA",
                "actions": [
                    {"type": "share", "time": T5, "user": "carol", "target": target("shared.h", "HAAAAAAA")},
                    {"type": "add", "time": T5, "user": "carol", "target": target("notes.txt", "JAAAAAAA")},
                ],
                "files": [
                    {"name": "shared.h", "physical": "HAAAAAAA"},
                    {
                        "name": "notes.txt",
                        "physical": "JAAAAAAA",
                        "actions": [{"type": "create", "time": T5, "user": "carol"}],
                    },
                ],
            },
        ],
    }
}


@pytest.fixture
def sample_store():
    """Fresh copy of the sample snapshot mapping"""
    return copy.deepcopy(SAMPLE_STORE)


@pytest.fixture
def database(sample_store):
    return load_snapshot_data(sample_store)


@pytest.fixture
def quiet_reporter():
    return ProgressReporter(quiet=True)


@pytest.fixture
def work_queue(quiet_reporter):
    queue = WorkQueue(quiet_reporter)
    yield queue
    queue.abort()


@pytest.fixture
def analyzer(work_queue, database, quiet_reporter):
    return RevisionAnalyzer(work_queue, database, quiet_reporter)


@pytest.fixture
def run_job(analyzer, work_queue, database):
    """Register a job by path and wait for the worker to finish it"""

    def run(root_path, boundary_path="$"):
        job = analyzer.add_item(
            database.get_item(root_path), database.get_item(boundary_path)
        )
        assert work_queue.wait_idle(timeout=10)
        return job

    return run


@pytest.fixture
def snapshot_file(tmp_path, sample_store):
    path = tmp_path / "store.yaml"
    path.write_text(yaml.safe_dump(sample_store), encoding="utf-8")
    return path
