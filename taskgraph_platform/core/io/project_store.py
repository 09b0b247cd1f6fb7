from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional, Union

from taskgraph_platform.core.config import CONFIG_FILE_NAME, ProjectConfig, load_and_merge
from taskgraph_platform.core.errors import FileOperationError, ProjectNotFoundError, ValidationError
from taskgraph_platform.core.graph.store import GraphStore
from taskgraph_platform.core.io.atomic_write import AtomicFileWriter
from taskgraph_platform.core.io.indexer import build_indexes
from taskgraph_platform.core.model import ProjectMetadata
from taskgraph_platform.core.validate.validate_project import validate_project


logger = logging.getLogger(__name__)

STORE_DIR = ".taskgraph"
PROJECT_FILE = "project.json"
DOCUMENT_FORMAT = "taskgraph-project"
DOCUMENT_VERSION = "1.0.0"

PathLike = Union[str, Path]


def project_file(project_dir: PathLike) -> Path:
    return Path(project_dir) / STORE_DIR / PROJECT_FILE


def find_project_path(start: Optional[PathLike] = None) -> Optional[Path]:
    """Walk upward from ``start`` (default: cwd) to the first directory holding a project."""
    cur = Path(start or Path.cwd()).resolve()
    for d in (cur, *cur.parents):
        if project_file(d).is_file():
            return d
    return None


class ProjectStore:
    """Loads and saves one project's graph under ``<project_dir>/.taskgraph/``.

    Every save writes the whole document (tasks, edges, metadata and freshly
    built indexes) through AtomicFileWriter. There is no file lock: with two
    concurrent writers the last save wins.
    """

    def __init__(
        self,
        project_dir: PathLike,
        config: Optional[ProjectConfig] = None,
        writer: Optional[AtomicFileWriter] = None,
    ) -> None:
        self.project_dir = Path(project_dir)
        self.config = config or load_and_merge(self.config_path)
        self.writer = writer or AtomicFileWriter(
            backup_count=self.config.backup_count,
            max_attempts=self.config.write_attempts,
            base_delay=self.config.retry_base_delay,
        )

    @property
    def store_dir(self) -> Path:
        return self.project_dir / STORE_DIR

    @property
    def path(self) -> Path:
        return self.store_dir / PROJECT_FILE

    @property
    def config_path(self) -> Path:
        return self.store_dir / CONFIG_FILE_NAME

    @property
    def log_path(self) -> Optional[Path]:
        """Configured log file, relative paths resolved against the store directory."""
        if not self.config.log_file:
            return None
        return self.store_dir / self.config.log_file

    def exists(self) -> bool:
        return self.writer.exists(self.path)

    def init(self) -> Path:
        return self.writer.ensure_dir(self.store_dir)

    def create_project(self, name: str, description: Optional[str] = None) -> GraphStore:
        if self.exists():
            raise ValidationError(
                code="E_PROJECT_EXISTS",
                message="a project already exists here",
                file=str(self.path),
            )
        if not name.strip():
            raise ValidationError(
                code="E_REQUIRED_FIELD",
                message="project name must be a non-empty string",
                path="project_name",
            )
        self.init()
        graph = GraphStore(
            ProjectMetadata(project_name=name.strip(), description=description or None),
            sort_cache_ttl=self.config.sort_cache_ttl,
        )
        self.save(graph, create_backup=False)
        logger.info("created project %r at %s", name, self.path)
        return graph

    def load_document(self) -> dict[str, Any]:
        """Read the raw document, tagged with ``__file__``. Does not validate."""
        if not self.exists():
            raise ProjectNotFoundError(
                code="E_PROJECT_NOT_FOUND",
                message="no project found (run `taskgraph init` first)",
                file=str(self.path),
            )
        doc = self.writer.read_json(self.path)
        if not isinstance(doc, dict):
            raise FileOperationError(
                code="E_INVALID_TOP_LEVEL",
                message="top-level document must be an object",
                file=str(self.path),
            )
        doc["__file__"] = str(self.path)
        return doc

    def load(self) -> GraphStore:
        doc = self.load_document()
        graph, errors = validate_project(doc, sort_cache_ttl=self.config.sort_cache_ttl)
        if errors:
            for e in errors[1:]:
                logger.debug("additional load error: %s", e)
            raise errors[0]
        assert graph is not None
        logger.debug("loaded %s: %d tasks", self.path, graph.size)
        return graph

    def to_document(self, graph: GraphStore) -> dict[str, Any]:
        return {
            "format": DOCUMENT_FORMAT,
            "version": DOCUMENT_VERSION,
            **graph.to_dict(),
            "indexes": build_indexes(graph),
        }

    def save(self, graph: GraphStore, *, create_backup: Optional[bool] = None) -> Path:
        if create_backup is None:
            create_backup = self.config.auto_backup
        graph.touch()
        self.init()
        path = self.writer.write(self.path, self.to_document(graph), create_backup=create_backup)
        logger.info("saved %d tasks to %s", graph.size, path)
        return path

    def import_file(self, source: PathLike, *, merge: bool = False) -> GraphStore:
        """Import tasks from a JSON file and save the result.

        ``source`` holds a project document, an array of task records or a
        single task record. By default the imported tasks replace the current
        ones; the save backs up the previous file. With ``merge`` an imported
        task replaces the current task with the same id, the other current
        tasks are kept and edges are rebuilt from blockers.
        """
        src = Path(source)
        metadata, tasks, edges = _split_import(self.writer.read_json(src), str(src))

        existed = self.exists()
        if merge:
            current = self.load()
            tasks = {**current.to_dict()["tasks"], **tasks}
            metadata = current.metadata.to_dict()
            edges = None
        elif metadata is None:
            metadata = self.get_metadata().to_dict() if existed else ProjectMetadata().to_dict()

        doc: dict[str, Any] = {"metadata": metadata, "tasks": tasks, "__file__": str(src)}
        if edges is not None:
            doc["edges"] = edges
        graph, errors = validate_project(doc, sort_cache_ttl=self.config.sort_cache_ttl)
        if errors:
            for e in errors[1:]:
                logger.debug("additional import error: %s", e)
            raise errors[0]
        assert graph is not None

        self.save(graph, create_backup=None if existed else False)
        logger.info("imported %d tasks from %s (merge=%s)", len(tasks), src, merge)
        return graph

    def get_metadata(self) -> ProjectMetadata:
        doc = self.load_document()
        raw = doc.get("metadata")
        return ProjectMetadata.from_dict(raw if isinstance(raw, dict) else {})

    def delete(self) -> bool:
        """Remove the project file and its backups. False if there was nothing to remove."""
        removed = False
        for backup in self.list_backups():
            removed = self.writer.delete(backup) or removed
        removed = self.writer.delete(self.path) or removed
        return removed

    def list_backups(self) -> list[Path]:
        return self.writer.list_backups(self.path)

    def restore_from_backup(self, backup: Optional[PathLike] = None) -> Path:
        """Replace the project file with a backup (newest by default).

        The backup must itself be a valid project. The current file is backed
        up first, so a restore can be undone.
        """
        backups = self.list_backups()
        if backup is None:
            if not backups:
                raise FileOperationError(
                    code="E_NO_BACKUP",
                    message="no backups available",
                    file=str(self.path),
                )
            source = backups[0]
        else:
            source = Path(backup)

        doc = self.writer.read_json(source)
        if not isinstance(doc, dict):
            raise FileOperationError(
                code="E_INVALID_TOP_LEVEL",
                message="backup is not a project document",
                file=str(source),
            )
        doc["__file__"] = str(source)
        _, errors = validate_project(doc)
        if errors:
            raise errors[0]

        self.writer.write(self.path, self.writer.read(source), create_backup=self.exists())
        logger.info("restored %s from %s", self.path, source.name)
        return source


def load(project_dir: PathLike) -> GraphStore:
    return ProjectStore(project_dir).load()


def save(project_dir: PathLike, graph: GraphStore) -> Path:
    return ProjectStore(project_dir).save(graph)


def _split_import(
    data: Any, file: str
) -> tuple[Optional[dict[str, Any]], dict[str, Any], Optional[Any]]:
    """Split imported JSON into (metadata, tasks by id, edges)."""
    if isinstance(data, dict) and isinstance(data.get("tasks"), dict):
        metadata = data.get("metadata")
        return (metadata if isinstance(metadata, dict) else None), dict(data["tasks"]), data.get("edges")

    records = data if isinstance(data, list) else [data]
    tasks: dict[str, Any] = {}
    for i, raw in enumerate(records):
        path = f"[{i}]" if isinstance(data, list) else None
        if not isinstance(raw, dict) or not isinstance(raw.get("id"), str) or not isinstance(raw.get("title"), str):
            raise ValidationError(
                code="E_IMPORT_UNRECOGNIZED",
                message="expected a project document, an array of tasks or a single task with id and title",
                file=file,
                path=path,
            )
        if raw["id"] in tasks:
            raise ValidationError(
                code="E_DUPLICATE_ID",
                message=f"task {raw['id']} appears more than once",
                file=file,
                path=path,
            )
        tasks[raw["id"]] = raw
    return None, tasks, None
