#!/usr/bin/env python3
"""
VSS Timeline - revision list builder for VSS to git migrations

Loads a snapshot of a VSS store, registers one analysis job per root project
and exports the combined, time-ordered revision list as JSON for the
changeset builder.

Usage:
    vss-timeline store.yaml --root $/Product/Main --boundary $ -o timeline.json
"""

import json
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import click
import yaml

from reporting import MemoryMonitor, ProgressReporter
from revision_analyzer import RevisionAnalyzer
from vss_store import VssDatabase, VssProject, load_database
from work_queue import WorkQueue

VERSION = "1.0.0"
SCHEMA_VERSION = "1.0.0"

POLL_INTERVAL = 0.1


# ============================================================================
# CONFIGURATION FILE SUPPORT
# ============================================================================

CONFIG_NAMES = [
    ".vss-timeline.yaml",
    ".vss-timeline.yml",
    ".vss-timeline.json",
]


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from YAML or JSON file."""
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    file_ext = os.path.splitext(config_path)[1].lower()

    with open(config_path, "r", encoding="utf-8") as f:
        if file_ext in [".yaml", ".yml"]:
            data = yaml.safe_load(f)
        elif file_ext == ".json":
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config file format: {file_ext}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration must be a mapping: {config_path}")
    return data


def find_config_file(snapshot_path: str) -> Optional[str]:
    """
    Auto-discover configuration next to the snapshot or in the current directory.
    Searches for: .vss-timeline.yaml, .vss-timeline.yml, .vss-timeline.json
    """
    search_paths = [
        os.path.dirname(os.path.abspath(snapshot_path)),
        os.getcwd(),
    ]

    for search_dir in search_paths:
        for config_name in CONFIG_NAMES:
            config_path = os.path.join(search_dir, config_name)
            if os.path.exists(config_path):
                return config_path

    return None


class ConfigResolver:
    """Resolve configuration with precedence: CLI > Config File > Defaults"""

    def __init__(
        self,
        cli_args: Dict[str, Any],
        config_path: Optional[str],
        snapshot_path: str,
    ):
        self.cli = {
            k: v for k, v in cli_args.items() if v is not None and v != () and v != []
        }
        self.config = {}
        self.config_path = config_path or find_config_file(snapshot_path)

        if self.config_path:
            self.config = load_config_file(self.config_path)

        # Normalize config keys (kebab-case to snake_case)
        self.config = {k.replace("-", "_"): v for k, v in self.config.items()}

    def get(self, key: str, default: Any = None) -> Any:
        """Resolve value based on precedence"""
        if key in self.cli:
            return self.cli[key]
        if key in self.config:
            return self.config[key]
        return default

    def get_list(self, key: str) -> List[str]:
        value = self.get(key, [])
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return list(value)


# ============================================================================
# EXPORT
# ============================================================================


def build_timeline_document(
    analyzer: RevisionAnalyzer, snapshot_path: str = ""
) -> Dict[str, Any]:
    """Serializable view of everything the changeset builder consumes"""
    timeline = analyzer.sorted_revisions
    return {
        "schema_version": SCHEMA_VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "snapshot_path": snapshot_path,
        "root_projects": [project.path for project in analyzer.root_projects],
        "aborted": analyzer.aborted,
        "counts": {
            "projects": analyzer.project_count,
            "files": analyzer.file_count,
            "revisions": analyzer.revision_count,
            "timestamps": len(timeline),
        },
        "errors": analyzer.work_queue.get_errors(),
        "processed_files": sorted(analyzer.processed_files),
        "destroyed_files": sorted(analyzer.destroyed_files),
        "timeline": [
            {
                "timestamp": timestamp.isoformat(),
                "revisions": [revision.to_dict() for revision in bucket],
            }
            for timestamp, bucket in timeline.items()
        ],
    }


def export_timeline(
    analyzer: RevisionAnalyzer, output_path: str, snapshot_path: str = ""
) -> Dict[str, Any]:
    """Write the timeline document to `output_path` and return it"""
    data = build_timeline_document(analyzer, snapshot_path)

    output_dir = os.path.dirname(output_path)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)

    return data


# ============================================================================
# RUNNING
# ============================================================================


def wait_for_analysis(
    work_queue: WorkQueue,
    analyzer: RevisionAnalyzer,
    reporter: ProgressReporter,
    memory_monitor: MemoryMonitor,
):
    """Poll live counters until the queue drains; abort on memory pressure"""
    progress_bar = reporter.create_progress_bar("Analyzing items")
    shown = 0

    try:
        while not work_queue.wait_idle(timeout=POLL_INTERVAL):
            visited = analyzer.project_count + analyzer.file_count
            if progress_bar is not None:
                status = work_queue.last_status
                if status:
                    progress_bar.set_description(status, refresh=False)
                progress_bar.update(visited - shown)
                progress_bar.set_postfix(revisions=analyzer.revision_count)
            shown = visited

            if memory_monitor.is_over_limit() and not work_queue.is_aborting:
                reporter.warning(
                    f"Memory limit exceeded ({memory_monitor.get_peak():.1f} MB), aborting"
                )
                work_queue.abort()
    except KeyboardInterrupt:
        reporter.warning("Interrupted, aborting analysis")
        work_queue.abort()
        work_queue.wait_idle()
    finally:
        if progress_bar is not None:
            progress_bar.update(analyzer.project_count + analyzer.file_count - shown)
            progress_bar.close()


def resolve_project(
    database: VssDatabase, path: str, role: str, reporter: ProgressReporter
) -> VssProject:
    try:
        return database.get_item(path)
    except KeyError:
        reporter.error(f"{role} project not found: {path}")
        sys.exit(1)


# ============================================================================
# CLI INTERFACE
# ============================================================================


@click.command(context_settings=dict(help_option_names=["-h", "--help"]))
@click.argument(
    "snapshot_path",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
)
@click.option(
    "-r",
    "--root",
    "roots",
    multiple=True,
    help="Project to migrate (repeat for several jobs)",
)
@click.option(
    "-b",
    "--boundary",
    help="Ancestor project to walk down from for inherited labels (default: $)",
)
@click.option(
    "-x",
    "--exclude",
    "exclude_files",
    help="Semicolon-separated glob patterns of paths to exclude",
)
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False),
    help="Output file (default: vss_timeline_TIMESTAMP.json)",
)
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file path (.yaml or .json)",
)
@click.option("--memory-limit", type=float, help="Memory limit in MB")
@click.option(
    "-q", "--quiet", is_flag=True, default=None, help="Suppress progress output"
)
@click.option(
    "-v",
    "--verbose",
    is_flag=True,
    default=None,
    help="Show the per-project analysis log",
)
@click.option("--no-color", is_flag=True, default=None, help="Disable colored output")
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show the jobs that would run without analyzing",
)
@click.version_option(version=VERSION)
def main(snapshot_path, config, **kwargs):
    """Build the time-ordered revision list of a VSS store snapshot."""
    try:
        resolver = ConfigResolver(kwargs, config, snapshot_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        ProgressReporter(use_colors=not kwargs.get("no_color")).error(
            f"Invalid configuration: {e}"
        )
        sys.exit(1)

    reporter = ProgressReporter(
        quiet=resolver.get("quiet", False),
        verbose=resolver.get("verbose", False),
        use_colors=not resolver.get("no_color", False),
    )
    if resolver.config_path and not config:
        reporter.info(f"Auto-discovered configuration: {resolver.config_path}")

    roots = resolver.get_list("roots") or resolver.get_list("root")
    if not roots:
        raise click.UsageError("At least one --root project is required")
    boundary_path = resolver.get("boundary", VssDatabase.ROOT_PROJECT)
    exclude_files = resolver.get("exclude_files")

    if resolver.get("dry_run", False):
        reporter.info("DRY RUN MODE - No analysis will be performed")
        reporter.info(f"Snapshot: {snapshot_path}")
        for root in roots:
            reporter.info(f"  Job: {root} (labels from {boundary_path})")
        reporter.info(f"Excluded files: {exclude_files or '(none)'}")
        return

    reporter.stage_start("Loading snapshot", snapshot_path)
    try:
        database = load_database(snapshot_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        reporter.error(f"Failed to load snapshot: {e}")
        sys.exit(1)
    reporter.stage_complete("Loading snapshot")

    # resolve every path before any job starts
    boundary = resolve_project(database, boundary_path, "Boundary", reporter)
    root_projects = [resolve_project(database, root, "Root", reporter) for root in roots]

    work_queue = WorkQueue(reporter)
    analyzer = RevisionAnalyzer(work_queue, database, reporter)
    analyzer.exclude_files = exclude_files
    for root_project in root_projects:
        analyzer.add_item(root_project, boundary)

    reporter.stage_start("Building revision list", f"{len(roots)} job(s)")
    memory_monitor = MemoryMonitor(limit_mb=resolver.get("memory_limit"))
    wait_for_analysis(work_queue, analyzer, reporter, memory_monitor)
    reporter.stage_complete(
        "Building revision list",
        {
            "Projects": f"{analyzer.project_count:,}",
            "Files": f"{analyzer.file_count:,}",
            "Revisions": f"{analyzer.revision_count:,}",
        },
    )

    output = resolver.get("output")
    if not output:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output = f"vss_timeline_{timestamp}.json"

    export_timeline(analyzer, output, snapshot_path)

    errors = work_queue.get_errors()
    reporter.summary(
        {
            "Root projects": ", ".join(p.path for p in analyzer.root_projects),
            "Projects": f"{analyzer.project_count:,}",
            "Files": f"{analyzer.file_count:,}",
            "Revisions": f"{analyzer.revision_count:,}",
            "Timestamps": f"{len(analyzer.sorted_revisions):,}",
            "Destroyed items": f"{len(analyzer.destroyed_files):,}",
            "Errors": len(errors),
            "Output": output,
        }
    )

    if work_queue.failures:
        sys.exit(1)
    if analyzer.aborted:
        reporter.warning("Analysis was aborted; the timeline is partial")
    else:
        reporter.success(f"Timeline written to {output}")


if __name__ == "__main__":
    main()
