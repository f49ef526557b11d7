"""
Authorization decisions for tasks, projects and teams.

Every function here is pure: it inspects already-loaded entity state and never
touches the database. Loading the task, its project and the membership rows is
the caller's job, which keeps these rules testable with plain objects.

Group entities (Project, Team) expose ``owner_id`` and an ordered ``members``
list. A member's user may be a bare id, an expanded object with an ``id``
attribute, or a mapping with an ``"id"`` key; all three resolve to the same
identity.
"""

import logging
from typing import Any, Iterable, Optional

from errors import ForbiddenError

logger = logging.getLogger(__name__)

MANAGER_ROLES = {"owner", "admin"}


def resolve_id(ref: Any) -> Optional[int]:
    """Reduce a user reference (id, ORM object or dict) to its integer id."""
    if ref is None:
        return None
    if isinstance(ref, dict):
        ref = ref.get("id")
    elif not isinstance(ref, (int, str)):
        ref = getattr(ref, "id", None)
    if ref is None:
        return None
    return int(ref)


def _role_value(role: Any) -> str:
    return getattr(role, "value", role)


def member_user_id(member: Any) -> Optional[int]:
    """
    Identity of the user behind a membership record.

    ORM rows carry ``user_id``; API payloads and tests may carry ``user`` in
    either bare or expanded form.
    """
    if isinstance(member, dict):
        return resolve_id(member.get("user_id", member.get("user")))
    user_id = getattr(member, "user_id", None)
    if user_id is not None:
        return int(user_id)
    return resolve_id(getattr(member, "user", None))


def member_role(member: Any) -> str:
    if isinstance(member, dict):
        return _role_value(member.get("role"))
    return _role_value(getattr(member, "role", None))


def find_member(group: Any, user_id: Any) -> Optional[Any]:
    """Return the membership record for user_id, or None."""
    wanted = resolve_id(user_id)
    for member in group.members:
        if member_user_id(member) == wanted:
            return member
    return None


def is_owner(entity: Any, user_id: Any) -> bool:
    owner = getattr(entity, "owner_id", None)
    if owner is None:
        owner = getattr(entity, "owner", None)
    return resolve_id(owner) == resolve_id(user_id)


def is_member(group: Any, user_id: Any) -> bool:
    return find_member(group, user_id) is not None


def is_manager_or_owner(group: Any, user_id: Any) -> bool:
    member = find_member(group, user_id)
    return member is not None and member_role(member) in MANAGER_ROLES


def _assignees(task: Any) -> Iterable[Any]:
    return getattr(task, "assignees", None) or []


def is_assignee(task: Any, user_id: Any, role: Optional[str] = None) -> bool:
    wanted = resolve_id(user_id)
    for assignee in _assignees(task):
        if member_user_id(assignee) != wanted:
            continue
        if role is None or member_role(assignee) == role:
            return True
    return False


def can_read_task(task: Any, user_id: Any, project: Optional[Any] = None) -> bool:
    """
    Owner, any assignee, or a member of the task's project may read a task.

    Args:
        task: Task with ``owner_id``, ``project_id`` and ``assignees`` loaded
        user_id: Requesting user
        project: The task's project (None when the task has no project)
    """
    if is_owner(task, user_id):
        return True
    if is_assignee(task, user_id):
        return True
    if getattr(task, "project_id", None) is not None and project is not None:
        return is_member(project, user_id)
    return False


def can_modify_task(task: Any, user_id: Any, project: Optional[Any] = None) -> bool:
    """
    Owner, a ``responsible`` assignee, or a manager-or-owner of the task's
    project may update or delete a task.
    """
    if is_owner(task, user_id):
        return True
    if is_assignee(task, user_id, role="responsible"):
        return True
    if getattr(task, "project_id", None) is not None and project is not None:
        return is_manager_or_owner(project, user_id)
    return False


def require_task_read(task: Any, user_id: Any, project: Optional[Any] = None) -> None:
    if not can_read_task(task, user_id, project):
        logger.info(f"User {user_id} denied read access to task {task.id}")
        raise ForbiddenError("Not authorized to access this task")


def require_task_write(task: Any, user_id: Any, project: Optional[Any] = None) -> None:
    if not can_modify_task(task, user_id, project):
        logger.info(f"User {user_id} denied write access to task {task.id}")
        raise ForbiddenError("Not authorized to modify this task")


def require_member(group: Any, user_id: Any, kind: str) -> None:
    if not is_member(group, user_id):
        logger.info(f"User {user_id} is not a member of {kind} {group.id}")
        raise ForbiddenError(f"Not authorized to access this {kind}")


def require_manager(group: Any, user_id: Any, kind: str) -> None:
    if not is_manager_or_owner(group, user_id):
        logger.info(f"User {user_id} is not owner or admin of {kind} {group.id}")
        raise ForbiddenError(f"Not authorized to manage this {kind}")


def require_owner(group: Any, user_id: Any, kind: str) -> None:
    if not is_owner(group, user_id):
        logger.info(f"User {user_id} is not the owner of {kind} {group.id}")
        raise ForbiddenError(f"Only the {kind} owner can perform this action")
