"""
Task hierarchy engine.

Tasks form a forest: each task optionally points at a parent through
``parent_task_id`` and subtasks are found by reverse lookup on that column.
This module owns the structural rules over that forest:

- cycle prevention for every parent assignment
- reparenting with same-owner checks
- non-force delete (blocked by children) and transactional force delete
- duplication of a task, optionally with its whole subtree
- completed_at bookkeeping on status transitions
- subtask progress aggregation

Walks use explicit worklists instead of recursion and issue one query per
node, so no lock is held across them. Concurrent reparenting of two tasks
that jointly close a cycle is not prevented: the check runs against the state
visible at check time and the last writer wins.
"""

import logging
import math
from collections import deque
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

import models
from database import atomic
from errors import ConflictError, InvalidReferenceError, NotFoundError
from time_utils import utc_now

logger = logging.getLogger(__name__)

COPY_PREFIX = "Copy of "


def get_task(db: Session, task_id: int) -> models.Task:
    task = db.query(models.Task).filter(models.Task.id == task_id).first()
    if task is None:
        logger.info(f"Task {task_id} not found")
        raise NotFoundError("Task not found")
    return task


def get_subtask(db: Session, parent_id: int, subtask_id: int) -> models.Task:
    """A task addressed through its parent; anything not a direct child of parent_id is NotFound."""
    subtask = (
        db.query(models.Task)
        .filter(models.Task.id == subtask_id, models.Task.parent_task_id == parent_id)
        .first()
    )
    if subtask is None:
        logger.info(f"Task {subtask_id} is not a subtask of task {parent_id}")
        raise NotFoundError("Subtask not found")
    return subtask


def get_task_project(db: Session, task: models.Task) -> Optional[models.Project]:
    if task.project_id is None:
        return None
    return db.query(models.Project).filter(models.Project.id == task.project_id).first()


# ============== Cycle prevention ==============

def would_create_cycle(db: Session, child_id: Optional[int], candidate_parent_id: int) -> bool:
    """
    Check whether making candidate_parent_id the parent of child_id would
    create a cycle.

    Walks upward from the candidate parent following parent links. Returns
    True if the walk reaches child_id, or if it revisits a node (the chain is
    already corrupt). Returns False once a root is reached.

    Args:
        db: Database session
        child_id: Task being (re)parented, None for a task not yet created
        candidate_parent_id: Proposed parent

    Returns:
        True if the assignment must be rejected
    """
    logger.debug(f"Checking cycle: child={child_id}, candidate_parent={candidate_parent_id}")

    if child_id is not None and child_id == candidate_parent_id:
        logger.info(f"Self-reference detected: task {child_id} cannot be its own parent")
        return True

    visited = set()
    current_id = candidate_parent_id

    while current_id is not None:
        if current_id in visited:
            logger.warning(f"Existing parent cycle detected at task {current_id}")
            return True
        visited.add(current_id)

        parent_id = (
            db.query(models.Task.parent_task_id)
            .filter(models.Task.id == current_id)
            .scalar()
        )
        if parent_id is None:
            return False

        if child_id is not None and parent_id == child_id:
            logger.info(f"Task {child_id} is an ancestor of task {candidate_parent_id}")
            return True

        current_id = parent_id

    return False


def validate_parent(
    db: Session, parent_id: int, owner_id: int, child_id: Optional[int] = None
) -> models.Task:
    """
    Validate a proposed parent for a task owned by owner_id.

    Raises:
        NotFoundError: parent task does not exist
        InvalidReferenceError: parent belongs to another owner, or a cycle
            would be created
    """
    parent = db.query(models.Task).filter(models.Task.id == parent_id).first()
    if parent is None:
        logger.info(f"Parent task {parent_id} not found")
        raise NotFoundError("Parent task not found")

    if parent.owner_id != owner_id:
        logger.info(f"Parent task {parent_id} belongs to user {parent.owner_id}, not {owner_id}")
        raise InvalidReferenceError("Parent task must belong to the same owner")

    if would_create_cycle(db, child_id, parent_id):
        raise InvalidReferenceError("Cannot create circular reference in task hierarchy")

    return parent


def reparent(db: Session, task: models.Task, new_parent_id: Optional[int]) -> models.Task:
    """
    Move a task under a new parent, or detach it when new_parent_id is None.

    All checks run before the assignment; nothing is written on failure.
    The caller commits.
    """
    if new_parent_id is None:
        logger.debug(f"Detaching task {task.id} from parent {task.parent_task_id}")
        task.parent_task_id = None
        return task

    validate_parent(db, new_parent_id, task.owner_id, child_id=task.id)
    logger.debug(f"Reparenting task {task.id}: {task.parent_task_id} -> {new_parent_id}")
    task.parent_task_id = new_parent_id
    return task


# ============== Status ==============

def apply_status(task: models.Task, new_status: models.TaskStatus) -> models.Task:
    """
    Set a task's status and keep completed_at in step with it.

    Entering completed stamps completed_at, leaving it clears completed_at.
    No workflow ordering is enforced between other statuses.
    """
    new_status = models.TaskStatus(new_status)
    if new_status == models.TaskStatus.completed:
        if task.status != models.TaskStatus.completed or task.completed_at is None:
            task.completed_at = utc_now()
    else:
        task.completed_at = None
    task.status = new_status
    return task


# ============== Traversal ==============

def child_ids(db: Session, task_id: int) -> List[int]:
    rows = (
        db.query(models.Task.id)
        .filter(models.Task.parent_task_id == task_id)
        .order_by(models.Task.id)
        .all()
    )
    return [row.id for row in rows]


def has_subtasks(db: Session, task_id: int) -> bool:
    return (
        db.query(models.Task.id)
        .filter(models.Task.parent_task_id == task_id)
        .first()
    ) is not None


def collect_descendant_ids(db: Session, root_id: int) -> List[int]:
    """
    Return every descendant of root_id in breadth-first order (parents before
    children). Each node is visited once even if the stored chain is corrupt.
    """
    descendants = []
    visited = {root_id}
    queue = deque([root_id])

    while queue:
        current_id = queue.popleft()
        for subtask_id in child_ids(db, current_id):
            if subtask_id in visited:
                logger.warning(f"Task {subtask_id} reached twice while walking subtree of {root_id}")
                continue
            visited.add(subtask_id)
            descendants.append(subtask_id)
            queue.append(subtask_id)

    logger.debug(f"Task {root_id} has {len(descendants)} descendant(s)")
    return descendants


# ============== Delete ==============

def delete_task(db: Session, task: models.Task, force: bool = False) -> List[int]:
    """
    Delete a task.

    Without force the delete fails if the task has any direct subtask. With
    force the whole subtree is removed together with the task in a single
    transaction: either every node disappears or none does.

    Returns:
        Ids of all deleted tasks, root first
    """
    task_id = task.id

    if not force:
        if has_subtasks(db, task_id):
            logger.info(f"Task {task_id} has subtasks, refusing non-force delete")
            raise ConflictError(
                "Cannot delete task with subtasks. Delete them first or use force delete."
            )
        with atomic(db):
            db.delete(task)
        logger.info(f"Task {task_id} deleted")
        return [task_id]

    with atomic(db):
        descendant_ids = collect_descendant_ids(db, task_id)
        tasks_by_id = {}
        if descendant_ids:
            tasks_by_id = {
                t.id: t
                for t in db.query(models.Task).filter(models.Task.id.in_(descendant_ids)).all()
            }
        # Deepest nodes first so no row is removed while a child still points at it
        for descendant_id in reversed(descendant_ids):
            db.delete(tasks_by_id[descendant_id])
            db.flush()
        db.delete(task)

    logger.info(f"Task {task_id} force deleted with {len(descendant_ids)} descendant(s)")
    return [task_id] + descendant_ids


# ============== Duplicate ==============

def _clone(source: models.Task, title: str, parent_task_id: Optional[int]) -> models.Task:
    clone = models.Task(
        title=title,
        description=source.description,
        priority=source.priority,
        due_date=source.due_date,
        owner_id=source.owner_id,
        category_id=source.category_id,
        project_id=source.project_id,
        parent_task_id=parent_task_id,
        estimated_time=source.estimated_time,
        actual_time=source.actual_time,
    )
    apply_status(clone, source.status)
    clone.tags = list(source.tags)
    clone.assignees = [
        models.TaskAssignee(user_id=assignee.user_id, role=assignee.role)
        for assignee in source.assignees
    ]
    return clone


def duplicate_task(db: Session, task: models.Task, include_subtasks: bool = False) -> models.Task:
    """
    Copy a task, and optionally its whole subtree, with fresh ids.

    The copy of the root is titled "Copy of <title>" and keeps the original's
    parent, so it lands next to the original. Descendant copies keep their
    titles and are attached to the copy of their own parent, reproducing the
    original tree shape. The original subtree is not modified.

    Returns:
        The new root task
    """
    logger.debug(f"Duplicating task {task.id} (include_subtasks={include_subtasks})")

    with atomic(db):
        root_copy = _clone(task, f"{COPY_PREFIX}{task.title}", task.parent_task_id)
        db.add(root_copy)
        db.flush()

        copied = 0
        if include_subtasks:
            visited = {task.id}
            queue = deque([(task.id, root_copy.id)])
            while queue:
                original_id, copy_id = queue.popleft()
                children = (
                    db.query(models.Task)
                    .filter(models.Task.parent_task_id == original_id)
                    .order_by(models.Task.id)
                    .all()
                )
                for child in children:
                    if child.id in visited:
                        continue
                    visited.add(child.id)
                    child_copy = _clone(child, child.title, copy_id)
                    db.add(child_copy)
                    db.flush()
                    copied += 1
                    queue.append((child.id, child_copy.id))

    db.refresh(root_copy)
    logger.info(f"Task {task.id} duplicated as {root_copy.id} with {copied} subtask copies")
    return root_copy


# ============== Progress ==============

def progress_percentage(completed: int, total: int) -> int:
    """round(100 * completed / total) with halves rounded up; 0 with no subtasks."""
    if total <= 0:
        return 0
    return int(math.floor(100 * completed / total + 0.5))


def progress_from_subtasks(subtasks: Iterable[models.Task]) -> Dict[str, int]:
    """Progress over subtasks that are already loaded."""
    subtasks = list(subtasks)
    total = len(subtasks)
    completed = sum(1 for s in subtasks if s.status == models.TaskStatus.completed)
    return {"total": total, "completed": completed, "progress": progress_percentage(completed, total)}


def subtask_progress(db: Session, task_id: int) -> Dict[str, int]:
    """Progress of a task's direct subtasks, counted in the database."""
    query = db.query(models.Task).filter(models.Task.parent_task_id == task_id)
    total = query.count()
    completed = query.filter(models.Task.status == models.TaskStatus.completed).count()
    result = {"total": total, "completed": completed, "progress": progress_percentage(completed, total)}
    logger.debug(f"Task {task_id} progress: {completed}/{total} ({result['progress']}%)")
    return result


def complete_all_subtasks(db: Session, task: models.Task) -> List[models.Task]:
    """Mark every direct subtask completed in one transaction."""
    with atomic(db):
        subtasks = (
            db.query(models.Task)
            .filter(models.Task.parent_task_id == task.id)
            .order_by(models.Task.id)
            .all()
        )
        for subtask in subtasks:
            apply_status(subtask, models.TaskStatus.completed)
    logger.info(f"Completed {len(subtasks)} subtask(s) of task {task.id}")
    return subtasks


# ============== Tree building ==============

def build_forest(tasks: Iterable[models.Task]) -> List[dict]:
    """
    Arrange loaded tasks into nested ``{"task": ..., "subtasks": [...]}``
    nodes. Tasks whose parent is not in the input are treated as roots.
    """
    tasks = list(tasks)
    by_id = {t.id: {"task": t, "subtasks": []} for t in tasks}
    roots = []
    for t in tasks:
        node = by_id[t.id]
        parent = by_id.get(t.parent_task_id) if t.parent_task_id is not None else None
        if parent is None:
            roots.append(node)
        else:
            parent["subtasks"].append(node)
    return roots
