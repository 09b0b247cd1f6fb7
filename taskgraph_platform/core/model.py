from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Literal, Optional, Sequence, TypeVar, Union

from taskgraph_platform.core.errors import AmbiguousIdError, ValidationError


TaskStatus = Literal["ready", "in_progress", "in_review", "completed", "blocked"]
TaskPriority = Literal["top", "second", "later"]
FixSource = Literal["review", "runtime", "regression"]

TASK_STATUSES: tuple[str, ...] = ("ready", "in_progress", "in_review", "completed", "blocked")
TASK_PRIORITIES: tuple[str, ...] = ("top", "second", "later")
FIX_SOURCES: tuple[str, ...] = ("review", "runtime", "regression")

# Five-state model used before status became derived. Only the migration tool reads these.
LEGACY_STATUSES: tuple[str, ...] = ("not_started", "pending", "in_progress", "completed", "blocked")

TITLE_MAX = 200
DESCRIPTION_MIN = 50
DESCRIPTION_MAX = 10000
CRITERIA_MIN, CRITERIA_MAX = 1, 10
DELIVERABLES_MIN, DELIVERABLES_MAX = 1, 5


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class SuccessCriterion:
    id: str
    text: str
    completed: bool = False
    completed_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "text": self.text, "completed": self.completed}
        if self.completed_at:
            out["completed_at"] = self.completed_at
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> SuccessCriterion:
        return cls(
            id=raw["id"],
            text=raw["text"],
            completed=bool(raw.get("completed", False)),
            completed_at=raw.get("completed_at"),
        )


@dataclass
class Deliverable:
    id: str
    text: str
    completed: bool = False
    completed_at: Optional[str] = None
    file_path: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "text": self.text, "completed": self.completed}
        if self.completed_at:
            out["completed_at"] = self.completed_at
        if self.file_path:
            out["file_path"] = self.file_path
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Deliverable:
        return cls(
            id=raw["id"],
            text=raw["text"],
            completed=bool(raw.get("completed", False)),
            completed_at=raw.get("completed_at"),
            file_path=raw.get("file_path"),
        )


@dataclass
class FixItem:
    """An issue raised against a task during review or at runtime."""

    id: str
    text: str
    added_at: str
    completed: bool = False
    completed_at: Optional[str] = None
    file_path: Optional[str] = None
    source: Optional[FixSource] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "completed": self.completed,
            "added_at": self.added_at,
        }
        if self.completed_at:
            out["completed_at"] = self.completed_at
        if self.file_path:
            out["file_path"] = self.file_path
        if self.source:
            out["source"] = self.source
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> FixItem:
        return cls(
            id=raw["id"],
            text=raw["text"],
            added_at=raw.get("added_at") or utc_now_iso(),
            completed=bool(raw.get("completed", False)),
            completed_at=raw.get("completed_at"),
            file_path=raw.get("file_path"),
            source=raw.get("source"),
        )


@dataclass
class LibraryVerification:
    """A check of the task against an external library's documentation."""

    library_id: str
    verified_at: str = field(default_factory=utc_now_iso)
    notes: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"library_id": self.library_id, "verified_at": self.verified_at}
        if self.notes:
            out["notes"] = self.notes
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> LibraryVerification:
        return cls(
            library_id=raw["library_id"],
            verified_at=raw.get("verified_at") or utc_now_iso(),
            notes=raw.get("notes") or None,
        )

    @classmethod
    def parse(cls, entry: str) -> LibraryVerification:
        """Parse ``library-id`` or ``library-id:notes``."""
        library_id, _, notes = entry.partition(":")
        if not library_id.strip():
            raise ValidationError(
                code="E_REQUIRED_FIELD",
                message="verification needs a library id",
                path="c7_verified",
            )
        return cls(library_id=library_id.strip(), notes=notes.strip() or None)


ChecklistItem = Union[SuccessCriterion, Deliverable, FixItem]
_Item = TypeVar("_Item", SuccessCriterion, Deliverable, FixItem)


def derive_status(
    success_criteria: Sequence[SuccessCriterion],
    deliverables: Sequence[Deliverable],
    need_fix: Sequence[FixItem],
    blockers: Sequence[str],
    approved: bool = False,
) -> TaskStatus:
    """Compute a task's lifecycle stage from its checklist and blocker state.

    Approval wins over everything else. Without it the rules apply in order:
    blockers, unresolved fixes, fully checked checklist, partially checked
    checklist, nothing checked.
    """
    if approved:
        return "completed"
    if blockers:
        return "blocked"
    if any(not f.completed for f in need_fix):
        return "in_progress"

    items: list[Union[SuccessCriterion, Deliverable]] = [*success_criteria, *deliverables]
    if items and all(i.completed for i in items):
        return "in_review"
    if any(i.completed for i in items):
        return "in_progress"
    return "ready"


@dataclass(eq=False)
class TaskNode:
    """A unit of work. ``status`` is derived, never assigned.

    Mutate through the methods below so ``updated_at`` stays current.
    """

    id: str
    title: str
    description: str
    priority: TaskPriority = "second"
    success_criteria: list[SuccessCriterion] = field(default_factory=list)
    deliverables: list[Deliverable] = field(default_factory=list)
    need_fix: list[FixItem] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)
    dependencies: str = ""
    related_files: list[str] = field(default_factory=list)
    notes: str = ""
    c7_verified: list[LibraryVerification] = field(default_factory=list)
    sub_items: list[str] = field(default_factory=list)
    assignee: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    completed_at: Optional[str] = None
    approved: bool = False

    @property
    def status(self) -> TaskStatus:
        return derive_status(
            self.success_criteria,
            self.deliverables,
            self.need_fix,
            self.blockers,
            self.approved,
        )

    @classmethod
    def create(
        cls,
        *,
        title: str,
        description: str,
        success_criteria: Sequence[str],
        deliverables: Sequence[str],
        priority: str = "second",
        blockers: Sequence[str] = (),
        dependencies: str = "",
        related_files: Sequence[str] = (),
        notes: str = "",
        assignee: Optional[str] = None,
        c7_verified: Sequence[LibraryVerification] = (),
        id: Optional[str] = None,
    ) -> TaskNode:
        """Build a new task, validating every required field."""
        _check_title(title)
        _check_description(description)
        _check_priority(priority)
        _check_count("success_criteria", len(success_criteria), CRITERIA_MIN, CRITERIA_MAX)
        _check_count("deliverables", len(deliverables), DELIVERABLES_MIN, DELIVERABLES_MAX)
        for i, text in enumerate(success_criteria):
            _check_item_text(text, f"success_criteria[{i}]")
        for i, text in enumerate(deliverables):
            _check_item_text(text, f"deliverables[{i}]")
        _check_twin(list(blockers), dependencies)

        now = utc_now_iso()
        return cls(
            id=id or new_id(),
            title=title.strip(),
            description=description.strip(),
            priority=priority,  # type: ignore[arg-type]
            success_criteria=[SuccessCriterion(id=new_id(), text=t.strip()) for t in success_criteria],
            deliverables=[Deliverable(id=new_id(), text=t.strip()) for t in deliverables],
            blockers=_unique(blockers),
            dependencies=dependencies.strip(),
            related_files=_unique(related_files),
            notes=notes,
            assignee=assignee,
            c7_verified=_unique_verifications(c7_verified),
            created_at=now,
            updated_at=now,
        )

    # -- scalar fields --------------------------------------------------

    def touch(self) -> None:
        self.updated_at = utc_now_iso()

    def set_title(self, title: str) -> None:
        _check_title(title)
        self.title = title.strip()
        self.touch()

    def set_description(self, description: str) -> None:
        _check_description(description)
        self.description = description.strip()
        self.touch()

    def set_priority(self, priority: str) -> None:
        _check_priority(priority)
        self.priority = priority  # type: ignore[assignment]
        self.touch()

    def set_assignee(self, assignee: Optional[str]) -> None:
        self.assignee = assignee or None
        self.touch()

    def set_dependencies(self, text: str) -> None:
        self.dependencies = text.strip()
        self.touch()

    def append_notes(self, text: str) -> None:
        text = text.strip()
        if not text:
            return
        self.notes = f"{self.notes}\n{text}" if self.notes else text
        self.touch()

    # -- checklists -----------------------------------------------------

    def add_success_criterion(self, text: str) -> SuccessCriterion:
        _check_item_text(text, "success_criteria")
        _check_count("success_criteria", len(self.success_criteria) + 1, CRITERIA_MIN, CRITERIA_MAX)
        item = SuccessCriterion(id=new_id(), text=text.strip())
        self.success_criteria.append(item)
        self.touch()
        return item

    def remove_success_criterion(self, item_id: str) -> SuccessCriterion:
        item = find_item(self.success_criteria, item_id, "success_criteria")
        _check_count("success_criteria", len(self.success_criteria) - 1, CRITERIA_MIN, CRITERIA_MAX)
        self.success_criteria.remove(item)
        self.touch()
        return item

    def complete_criterion(self, item_id: str, completed: bool = True) -> SuccessCriterion:
        item = find_item(self.success_criteria, item_id, "success_criteria")
        _mark(item, completed)
        self.touch()
        return item

    def add_deliverable(self, text: str, file_path: Optional[str] = None) -> Deliverable:
        _check_item_text(text, "deliverables")
        _check_count("deliverables", len(self.deliverables) + 1, DELIVERABLES_MIN, DELIVERABLES_MAX)
        item = Deliverable(id=new_id(), text=text.strip(), file_path=file_path or None)
        self.deliverables.append(item)
        self.touch()
        return item

    def remove_deliverable(self, item_id: str) -> Deliverable:
        item = find_item(self.deliverables, item_id, "deliverables")
        _check_count("deliverables", len(self.deliverables) - 1, DELIVERABLES_MIN, DELIVERABLES_MAX)
        self.deliverables.remove(item)
        self.touch()
        return item

    def complete_deliverable(self, item_id: str, completed: bool = True) -> Deliverable:
        item = find_item(self.deliverables, item_id, "deliverables")
        _mark(item, completed)
        self.touch()
        return item

    def add_need_fix(
        self,
        text: str,
        source: Optional[str] = "review",
        file_path: Optional[str] = None,
    ) -> FixItem:
        _check_item_text(text, "need_fix")
        if source is not None and source not in FIX_SOURCES:
            raise ValidationError(
                code="E_INVALID_ENUM",
                message=f"source must be one of {list(FIX_SOURCES)}",
                path="need_fix.source",
            )
        item = FixItem(
            id=new_id(),
            text=text.strip(),
            added_at=utc_now_iso(),
            file_path=file_path or None,
            source=source,  # type: ignore[arg-type]
        )
        self.need_fix.append(item)
        self.touch()
        return item

    def complete_need_fix(self, item_id: str, completed: bool = True) -> FixItem:
        item = find_item(self.need_fix, item_id, "need_fix")
        _mark(item, completed)
        self.touch()
        return item

    def remove_need_fix(self, item_id: str) -> FixItem:
        item = find_item(self.need_fix, item_id, "need_fix")
        self.need_fix.remove(item)
        self.touch()
        return item

    def adopt_items(
        self,
        success_criteria: Iterable[SuccessCriterion],
        deliverables: Iterable[Deliverable],
        need_fix: Iterable[FixItem] = (),
    ) -> None:
        """Append copies of another task's checklist items under fresh ids.

        Used by merge, which may take a task past the create-time item limits.
        """
        for c in success_criteria:
            self.success_criteria.append(
                SuccessCriterion(id=new_id(), text=c.text, completed=c.completed, completed_at=c.completed_at)
            )
        for d in deliverables:
            self.deliverables.append(
                Deliverable(
                    id=new_id(),
                    text=d.text,
                    completed=d.completed,
                    completed_at=d.completed_at,
                    file_path=d.file_path,
                )
            )
        for f in need_fix:
            self.need_fix.append(
                FixItem(
                    id=new_id(),
                    text=f.text,
                    added_at=f.added_at,
                    completed=f.completed,
                    completed_at=f.completed_at,
                    file_path=f.file_path,
                    source=f.source,
                )
            )
        self.touch()

    # -- blockers and files ---------------------------------------------

    def add_blocker(self, blocker_id: str) -> bool:
        """Record ``blocker_id`` as blocking this task. Returns False if already present.

        This only edits the node. Use the graph operations to keep edges in step.
        """
        if blocker_id == self.id:
            raise ValidationError(
                code="E_SELF_BLOCKER",
                message="a task cannot block itself",
                path="blockers",
            )
        if blocker_id in self.blockers:
            return False
        self.blockers.append(blocker_id)
        self.touch()
        return True

    def remove_blocker(self, blocker_id: str) -> bool:
        if blocker_id not in self.blockers:
            return False
        self.blockers.remove(blocker_id)
        self.touch()
        return True

    def add_related_file(self, path: str) -> bool:
        path = path.strip()
        if not path or path in self.related_files:
            return False
        self.related_files.append(path)
        self.touch()
        return True

    def remove_related_file(self, path: str) -> bool:
        if path not in self.related_files:
            return False
        self.related_files.remove(path)
        self.touch()
        return True

    def add_verification(self, verification: LibraryVerification) -> bool:
        """Record a library verification. A library already recorded is kept as is."""
        if any(v.library_id == verification.library_id for v in self.c7_verified):
            return False
        self.c7_verified.append(verification)
        self.touch()
        return True

    def is_verified_against(self, library: str) -> bool:
        """Case-insensitive substring match on the recorded library ids."""
        needle = library.lower()
        return any(needle in v.library_id.lower() for v in self.c7_verified)

    # -- approval -------------------------------------------------------

    def approve(self) -> None:
        status = self.status
        if status != "in_review":
            raise ValidationError(
                code="E_NOT_IN_REVIEW",
                message=f"only in_review tasks can be approved (task {self.id} is {status})",
                path="status",
            )
        self.approved = True
        self.completed_at = utc_now_iso()
        self.touch()

    def reopen(self) -> None:
        if not self.approved:
            raise ValidationError(
                code="E_NOT_COMPLETED",
                message=f"task {self.id} is not completed",
                path="status",
            )
        self.approved = False
        self.completed_at = None
        self.touch()

    # -- serialization --------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "success_criteria": [c.to_dict() for c in self.success_criteria],
            "deliverables": [d.to_dict() for d in self.deliverables],
            "need_fix": [f.to_dict() for f in self.need_fix],
            "blockers": list(self.blockers),
            "dependencies": self.dependencies,
            "related_files": list(self.related_files),
            "notes": self.notes,
            "c7_verified": [v.to_dict() for v in self.c7_verified],
            "sub_items": list(self.sub_items),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }
        if self.assignee:
            out["assignee"] = self.assignee
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TaskNode:
        """Hydrate from a validated record. Only a stored ``completed`` status is trusted."""
        created_at = raw.get("created_at") or utc_now_iso()
        return cls(
            id=raw["id"],
            title=raw["title"],
            description=raw.get("description", ""),
            priority=raw.get("priority", "second"),
            success_criteria=[SuccessCriterion.from_dict(c) for c in raw.get("success_criteria") or []],
            deliverables=[Deliverable.from_dict(d) for d in raw.get("deliverables") or []],
            need_fix=[FixItem.from_dict(f) for f in raw.get("need_fix") or []],
            blockers=list(raw.get("blockers") or []),
            dependencies=raw.get("dependencies") or "",
            related_files=list(raw.get("related_files") or []),
            notes=raw.get("notes") or "",
            c7_verified=[LibraryVerification.from_dict(v) for v in raw.get("c7_verified") or []],
            sub_items=list(raw.get("sub_items") or []),
            assignee=raw.get("assignee"),
            created_at=created_at,
            updated_at=raw.get("updated_at") or created_at,
            completed_at=raw.get("completed_at"),
            approved=raw.get("status") == "completed",
        )


@dataclass
class ProjectMetadata:
    project_name: str = "Untitled Project"
    version: str = "1.0.0"
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    description: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "project_name": self.project_name,
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.description:
            out["description"] = self.description
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ProjectMetadata:
        created_at = raw.get("created_at") or utc_now_iso()
        return cls(
            project_name=raw.get("project_name") or "Untitled Project",
            version=raw.get("version") or "1.0.0",
            created_at=created_at,
            updated_at=raw.get("updated_at") or created_at,
            description=raw.get("description"),
        )


def find_item(items: Sequence[_Item], item_id: str, path: str) -> _Item:
    """Find a checklist item by exact id or unique id prefix."""
    for item in items:
        if item.id == item_id:
            return item
    matches = [i for i in items if item_id and i.id.startswith(item_id)]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise AmbiguousIdError(
            code="E_AMBIGUOUS_ID",
            message=f"item id prefix {item_id!r} matches {len(matches)} items",
            path=path,
        )
    raise ValidationError(
        code="E_ITEM_NOT_FOUND",
        message=f"no item with id {item_id!r}",
        path=path,
    )


def _mark(item: ChecklistItem, completed: bool) -> None:
    if item.completed == completed:
        return
    item.completed = completed
    item.completed_at = utc_now_iso() if completed else None


def _unique(values: Iterable[str]) -> list[str]:
    out: list[str] = []
    for v in values:
        if v not in out:
            out.append(v)
    return out


def _unique_verifications(values: Iterable[LibraryVerification]) -> list[LibraryVerification]:
    out: dict[str, LibraryVerification] = {}
    for v in values:
        out.setdefault(v.library_id, v)
    return list(out.values())


def _check_title(title: Any) -> None:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError(
            code="E_REQUIRED_FIELD",
            message="title is required and must be a non-empty string",
            path="title",
        )
    if len(title.strip()) > TITLE_MAX:
        raise ValidationError(
            code="E_OUT_OF_RANGE",
            message=f"title must be at most {TITLE_MAX} characters",
            path="title",
        )


def _check_description(description: Any) -> None:
    if not isinstance(description, str):
        raise ValidationError(
            code="E_REQUIRED_FIELD",
            message="description is required and must be a string",
            path="description",
        )
    n = len(description.strip())
    if n < DESCRIPTION_MIN or n > DESCRIPTION_MAX:
        raise ValidationError(
            code="E_OUT_OF_RANGE",
            message=f"description must be {DESCRIPTION_MIN}-{DESCRIPTION_MAX} characters (got {n})",
            path="description",
        )


def _check_priority(priority: Any) -> None:
    if priority not in TASK_PRIORITIES:
        raise ValidationError(
            code="E_INVALID_ENUM",
            message=f"priority must be one of {list(TASK_PRIORITIES)}",
            path="priority",
        )


def _check_count(path: str, n: int, lo: int, hi: int) -> None:
    if n < lo or n > hi:
        raise ValidationError(
            code="E_OUT_OF_RANGE",
            message=f"{path} must have {lo}-{hi} items (got {n})",
            path=path,
        )


def _check_item_text(text: Any, path: str) -> None:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError(
            code="E_REQUIRED_FIELD",
            message="item text must be a non-empty string",
            path=path,
        )


def _check_twin(blockers: list[str], dependencies: str) -> None:
    if blockers and not dependencies.strip():
        raise ValidationError(
            code="E_TWIN_VALIDATION",
            message="blockers require a dependencies explanation",
            path="dependencies",
        )
    if dependencies.strip() and not blockers:
        raise ValidationError(
            code="E_TWIN_VALIDATION",
            message="dependencies explanation given without any blockers",
            path="blockers",
        )
