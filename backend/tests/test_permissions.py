"""
Tests for the pure authorization predicates in auth/permissions.py.

Entities are plain SimpleNamespace objects so the rules are checked without a
database. Covers:
- owner / member / manager-or-owner predicates
- bare, expanded and dict user references resolving to the same identity
- task read and modify rules
"""

import logging
from types import SimpleNamespace

import pytest

from auth import permissions
from errors import ForbiddenError

logger = logging.getLogger(__name__)


def make_group(owner_id, members):
    return SimpleNamespace(id=1, owner_id=owner_id, members=members)


def bare(user_id, role):
    return {"user": user_id, "role": role}


def expanded(user_id, role):
    return {"user": {"id": user_id, "name": f"User {user_id}"}, "role": role}


def make_task(owner_id=1, project_id=None, assignees=None):
    return SimpleNamespace(id=10, owner_id=owner_id, project_id=project_id, assignees=assignees or [])


# ============== Identity ==============


@pytest.mark.parametrize("ref", [7, "7", {"id": 7}, SimpleNamespace(id=7)])
def test_resolve_id_forms(ref):
    assert permissions.resolve_id(ref) == 7


def test_resolve_id_none():
    assert permissions.resolve_id(None) is None
    assert permissions.resolve_id({"name": "no id"}) is None


def test_member_user_id_prefers_user_id_attribute():
    member = SimpleNamespace(user_id=3, user=SimpleNamespace(id=3), role="member")
    assert permissions.member_user_id(member) == 3


@pytest.mark.parametrize("form", [bare, expanded])
def test_membership_identical_for_bare_and_expanded(form):
    group = make_group(1, [form(1, "owner"), form(2, "admin"), form(3, "member")])

    assert permissions.is_member(group, 2)
    assert permissions.is_member(group, {"id": 3})
    assert not permissions.is_member(group, 4)
    assert permissions.is_manager_or_owner(group, 1)
    assert permissions.is_manager_or_owner(group, 2)
    assert not permissions.is_manager_or_owner(group, 3)
    logger.info(f"✓ Membership predicates agree for {form.__name__} members")


def test_owner_accepts_expanded_owner():
    group = SimpleNamespace(id=1, owner=SimpleNamespace(id=5), members=[])
    assert permissions.is_owner(group, 5)
    assert not permissions.is_owner(group, 6)


def test_enum_roles_compare_by_value():
    from models import MemberRole

    group = make_group(1, [SimpleNamespace(user_id=2, role=MemberRole.admin)])
    assert permissions.is_manager_or_owner(group, 2)


# ============== Task read ==============


def test_owner_can_read_and_modify():
    task = make_task(owner_id=1)
    assert permissions.can_read_task(task, 1)
    assert permissions.can_modify_task(task, 1)


def test_stranger_cannot_read_personal_task():
    task = make_task(owner_id=1)
    assert not permissions.can_read_task(task, 2)
    assert not permissions.can_modify_task(task, 2)


def test_any_assignee_can_read():
    task = make_task(assignees=[SimpleNamespace(user_id=2, role="informed")])
    assert permissions.can_read_task(task, 2)


def test_project_member_can_read_project_task():
    project = make_group(1, [bare(1, "owner"), bare(3, "member")])
    task = make_task(owner_id=1, project_id=1)

    assert permissions.can_read_task(task, 3, project)
    assert not permissions.can_read_task(task, 4, project)


def test_project_membership_ignored_without_project_id():
    project = make_group(1, [bare(3, "member")])
    task = make_task(owner_id=1, project_id=None)

    assert not permissions.can_read_task(task, 3, project)


# ============== Task modify ==============


def test_responsible_assignee_can_modify():
    task = make_task(assignees=[SimpleNamespace(user_id=2, role="responsible")])
    assert permissions.can_modify_task(task, 2)


@pytest.mark.parametrize("role", ["accountable", "consulted", "informed"])
def test_other_assignee_roles_cannot_modify(role):
    task = make_task(assignees=[SimpleNamespace(user_id=2, role=role)])
    assert permissions.can_read_task(task, 2)
    assert not permissions.can_modify_task(task, 2)


def test_project_admin_can_modify_but_plain_member_cannot():
    project = make_group(1, [expanded(1, "owner"), expanded(2, "admin"), expanded(3, "member")])
    task = make_task(owner_id=1, project_id=1)

    assert permissions.can_modify_task(task, 2, project)
    assert not permissions.can_modify_task(task, 3, project)


# ============== Raising wrappers ==============


def test_require_task_write_raises_forbidden():
    with pytest.raises(ForbiddenError):
        permissions.require_task_write(make_task(owner_id=1), 2)


def test_require_manager_raises_for_plain_member():
    group = make_group(1, [bare(1, "owner"), bare(3, "member")])
    permissions.require_manager(group, 1, "team")
    with pytest.raises(ForbiddenError):
        permissions.require_manager(group, 3, "team")


def test_require_owner_rejects_admin():
    group = make_group(1, [bare(1, "owner"), bare(2, "admin")])
    with pytest.raises(ForbiddenError):
        permissions.require_owner(group, 2, "project")
