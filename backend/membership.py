"""
Membership bookkeeping for projects and teams.

Projects and teams share one shape: an ``owner_id`` field plus an ordered
members list where exactly one row has role ``owner`` and that row's user is
``owner_id``. The functions here are the only writers of that pair and keep
it consistent through add, remove, role change and delete.
"""

import logging
from typing import Optional, Type, Union

from sqlalchemy.orm import Session

import models
from auth.permissions import (
    find_member,
    is_owner,
    member_role,
    require_manager,
    require_member,
    require_owner,
)
from database import atomic
from errors import ConflictError, ForbiddenError, InvalidReferenceError, NotFoundError
from time_utils import utc_now

logger = logging.getLogger(__name__)

Group = Union[models.Project, models.Team]
MemberModel = Union[Type[models.ProjectMember], Type[models.TeamMember]]


def _kind(group: Group) -> str:
    return "team" if isinstance(group, models.Team) else "project"


def _member_model(group: Group) -> MemberModel:
    return models.TeamMember if isinstance(group, models.Team) else models.ProjectMember


# ============== Lookup ==============

def get_project(db: Session, project_id: int) -> models.Project:
    project = db.query(models.Project).filter(models.Project.id == project_id).first()
    if project is None:
        logger.info(f"Project {project_id} not found")
        raise NotFoundError("Project not found")
    return project


def get_team(db: Session, team_id: int) -> models.Team:
    team = db.query(models.Team).filter(models.Team.id == team_id).first()
    if team is None:
        logger.info(f"Team {team_id} not found")
        raise NotFoundError("Team not found")
    return team


def resolve_project(db: Session, project_id, user_id: int):
    """
    Resolve a task's project reference. The requester must be a project member.

    Raises:
        NotFoundError: project does not exist
        InvalidReferenceError: requester is not a member of the project
    """
    if project_id is None:
        return None
    project = get_project(db, project_id)
    if find_member(project, user_id) is None:
        logger.info(f"User {user_id} referenced project {project_id} without membership")
        raise InvalidReferenceError("Project is not accessible to this user")
    return project


def ensure_unique_name(
    db: Session, model, name: str, owner_id: int, exclude_id: Optional[int] = None
) -> None:
    """Project and team names are unique per owner."""
    query = db.query(model).filter(model.name == name, model.owner_id == owner_id)
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    if query.first() is not None:
        kind = "Team" if model is models.Team else "Project"
        raise ConflictError(f"{kind} with that name already exists")


def get_user(db: Session, user_id: int) -> models.User:
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if user is None:
        raise NotFoundError("User not found")
    return user


# ============== Create ==============

def init_group(group: Group, owner_id: int) -> Group:
    """Make owner_id the owner of a new project or team, field and member row alike."""
    group.owner_id = owner_id
    group.members = [
        _member_model(group)(user_id=owner_id, role=models.MemberRole.owner, joined_at=utc_now())
    ]
    return group


# ============== Members ==============

def add_member(
    db: Session, group: Group, requester_id: int, user_id: int,
    role: models.MemberRole = models.MemberRole.member,
):
    """
    Add a user to a project or team. Requires manager-or-owner.

    Ownership is never granted here; use change_role to transfer it.
    """
    kind = _kind(group)
    require_manager(group, requester_id, kind)

    role = models.MemberRole(role)
    if role == models.MemberRole.owner:
        raise InvalidReferenceError("Ownership can only be transferred through a role change")

    get_user(db, user_id)

    if find_member(group, user_id) is not None:
        logger.info(f"User {user_id} is already a member of {kind} {group.id}")
        raise ConflictError(f"User is already a member of this {kind}")

    member = _member_model(group)(user_id=user_id, role=role, joined_at=utc_now())
    with atomic(db):
        group.members.append(member)

    logger.info(f"User {user_id} added to {kind} {group.id} as {role.value} by user {requester_id}")
    return member


def remove_member(db: Session, group: Group, requester_id: int, user_id: int) -> None:
    """Remove a member. The current owner cannot be removed."""
    kind = _kind(group)
    require_manager(group, requester_id, kind)

    member = find_member(group, user_id)
    if member is None:
        raise NotFoundError(f"User is not a member of this {kind}")

    if is_owner(group, user_id) or member_role(member) == models.MemberRole.owner.value:
        logger.info(f"Refusing to remove owner {user_id} from {kind} {group.id}")
        raise ConflictError(f"Cannot remove the {kind} owner. Transfer ownership first.")

    with atomic(db):
        group.members.remove(member)

    logger.info(f"User {user_id} removed from {kind} {group.id} by user {requester_id}")


def change_role(
    db: Session, group: Group, requester_id: int, user_id: int, new_role: models.MemberRole
):
    """
    Change a member's role.

    Requires manager-or-owner. Promoting to owner is reserved to the current
    owner and demotes the previous owner to admin in the same transaction.
    The current owner cannot be demoted directly.

    Returns:
        The updated membership record
    """
    kind = _kind(group)
    require_manager(group, requester_id, kind)

    new_role = models.MemberRole(new_role)
    member = find_member(group, user_id)
    if member is None:
        raise NotFoundError(f"User is not a member of this {kind}")

    if new_role == models.MemberRole.owner:
        if not is_owner(group, requester_id):
            logger.info(f"User {requester_id} tried to transfer ownership of {kind} {group.id}")
            raise ForbiddenError(f"Only the {kind} owner can transfer ownership")
        if is_owner(group, user_id):
            return member
        _transfer_ownership(db, group, member)
        return member

    if is_owner(group, user_id):
        logger.info(f"Refusing to demote owner {user_id} of {kind} {group.id}")
        raise ConflictError(f"Cannot change the {kind} owner's role. Transfer ownership first.")

    with atomic(db):
        member.role = new_role

    logger.info(f"User {user_id} in {kind} {group.id} now has role {new_role.value}")
    return member


def _transfer_ownership(db: Session, group: Group, new_owner_member) -> None:
    kind = _kind(group)
    previous_owner_id = group.owner_id
    new_owner_id = new_owner_member.user_id
    ensure_unique_name(db, type(group), group.name, new_owner_id, exclude_id=group.id)

    with atomic(db):
        previous = find_member(group, previous_owner_id)
        if previous is not None:
            previous.role = models.MemberRole.admin
        group.owner_id = new_owner_id
        new_owner_member.role = models.MemberRole.owner

    logger.info(
        f"Ownership of {kind} {group.id} transferred from user {previous_owner_id} to user {new_owner_id}"
    )


# ============== Delete ==============

def delete_project(db: Session, project: models.Project, requester_id: int) -> int:
    """Owner-only delete. Tasks are detached from the project, not deleted."""
    require_owner(project, requester_id, "project")
    project_id = project.id

    with atomic(db):
        detached = (
            db.query(models.Task)
            .filter(models.Task.project_id == project_id)
            .update({models.Task.project_id: None}, synchronize_session="fetch")
        )
        db.delete(project)

    logger.info(f"Project {project_id} deleted by user {requester_id}, detached {detached} task(s)")
    return detached


def delete_team(db: Session, team: models.Team, requester_id: int) -> int:
    """Owner-only delete. Projects are detached from the team, not deleted."""
    require_owner(team, requester_id, "team")
    team_id = team.id

    with atomic(db):
        detached = (
            db.query(models.Project)
            .filter(models.Project.team_id == team_id)
            .update({models.Project.team_id: None}, synchronize_session="fetch")
        )
        db.delete(team)

    logger.info(f"Team {team_id} deleted by user {requester_id}, detached {detached} project(s)")
    return detached


def require_group_member(group: Group, user_id: int) -> None:
    require_member(group, user_id, _kind(group))


def require_group_manager(group: Group, user_id: int) -> None:
    require_manager(group, user_id, _kind(group))
