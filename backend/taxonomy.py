"""
Per-user categories and tags.

Covers the default sets seeded at registration, resolution of category/tag
references from tasks (which must share the task's owner) and deletion with
detach: tasks referencing a removed category or tag are kept and only lose
the reference.
"""

import logging
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

import models
from database import atomic
from errors import ConflictError, InvalidReferenceError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    {"name": "Work", "color": "#e74c3c", "icon": "briefcase"},
    {"name": "Personal", "color": "#3498db", "icon": "user"},
    {"name": "Health", "color": "#2ecc71", "icon": "heart"},
    {"name": "Finance", "color": "#f39c12", "icon": "dollar-sign"},
    {"name": "Education", "color": "#9b59b6", "icon": "book"},
]

DEFAULT_TAGS = [
    {"name": "Important", "color": "#e74c3c"},
    {"name": "Urgent", "color": "#f39c12"},
    {"name": "Later", "color": "#3498db"},
    {"name": "Quick Win", "color": "#2ecc71"},
    {"name": "Waiting", "color": "#9b59b6"},
]


def seed_defaults(db: Session, user_id: int) -> None:
    """Add the default categories and tags for a new user. The caller commits."""
    for category in DEFAULT_CATEGORIES:
        db.add(models.Category(owner_id=user_id, is_default=True, **category))
    for tag in DEFAULT_TAGS:
        db.add(models.Tag(owner_id=user_id, **tag))
    logger.debug(
        f"Seeded {len(DEFAULT_CATEGORIES)} categories and {len(DEFAULT_TAGS)} tags for user {user_id}"
    )


# ============== Lookup ==============

def get_owned_category(db: Session, category_id: int, user_id: int) -> models.Category:
    """A category is only visible to its owner; anything else is NotFound."""
    category = (
        db.query(models.Category)
        .filter(models.Category.id == category_id, models.Category.owner_id == user_id)
        .first()
    )
    if category is None:
        raise NotFoundError("Category not found")
    return category


def get_owned_tag(db: Session, tag_id: int, user_id: int) -> models.Tag:
    tag = (
        db.query(models.Tag)
        .filter(models.Tag.id == tag_id, models.Tag.owner_id == user_id)
        .first()
    )
    if tag is None:
        raise NotFoundError("Tag not found")
    return tag


def resolve_category(db: Session, category_id: Optional[int], owner_id: int) -> Optional[models.Category]:
    """
    Resolve a task's category reference.

    Raises:
        NotFoundError: category does not exist
        InvalidReferenceError: category belongs to someone other than the task owner
    """
    if category_id is None:
        return None
    category = db.query(models.Category).filter(models.Category.id == category_id).first()
    if category is None:
        raise NotFoundError("Category not found")
    if category.owner_id != owner_id:
        logger.info(f"Category {category_id} is not owned by user {owner_id}")
        raise InvalidReferenceError("Category must belong to the task owner")
    return category


def resolve_tags(db: Session, tag_ids: Optional[Sequence[int]], owner_id: int) -> List[models.Tag]:
    """Resolve tag references, keeping request order and dropping repeats."""
    if not tag_ids:
        return []
    unique_ids = list(dict.fromkeys(tag_ids))
    tags = db.query(models.Tag).filter(models.Tag.id.in_(unique_ids)).all()
    by_id = {tag.id: tag for tag in tags}

    missing = [tag_id for tag_id in unique_ids if tag_id not in by_id]
    if missing:
        raise NotFoundError(f"Tags not found: {missing}")

    foreign = [tag.id for tag in tags if tag.owner_id != owner_id]
    if foreign:
        logger.info(f"Tags {foreign} are not owned by user {owner_id}")
        raise InvalidReferenceError("Tags must belong to the task owner")

    return [by_id[tag_id] for tag_id in unique_ids]


# ============== Uniqueness ==============

def ensure_unique_category_name(
    db: Session, name: str, owner_id: int, exclude_id: Optional[int] = None
) -> None:
    query = db.query(models.Category).filter(
        models.Category.name == name, models.Category.owner_id == owner_id
    )
    if exclude_id is not None:
        query = query.filter(models.Category.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("Category with that name already exists")


def ensure_unique_tag_name(
    db: Session, name: str, owner_id: int, exclude_id: Optional[int] = None
) -> None:
    query = db.query(models.Tag).filter(models.Tag.name == name, models.Tag.owner_id == owner_id)
    if exclude_id is not None:
        query = query.filter(models.Tag.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("Tag with that name already exists")


# ============== Delete with detach ==============

def delete_category(db: Session, category: models.Category) -> int:
    """
    Delete a category and null it out on every task that references it.

    Default categories are protected.

    Returns:
        Number of tasks detached
    """
    if category.is_default:
        logger.info(f"Refusing to delete default category {category.id}")
        raise ConflictError("Cannot delete default category")

    category_id = category.id
    with atomic(db):
        detached = (
            db.query(models.Task)
            .filter(models.Task.category_id == category_id)
            .update({models.Task.category_id: None}, synchronize_session="fetch")
        )
        db.delete(category)

    logger.info(f"Category {category_id} deleted, detached from {detached} task(s)")
    return detached


def delete_tag(db: Session, tag: models.Tag) -> int:
    """
    Delete a tag and pull it from every task that carries it.

    Returns:
        Number of tasks detached
    """
    tag_id = tag.id
    with atomic(db):
        detached = len(tag.tasks)
        tag.tasks.clear()
        db.flush()
        db.delete(tag)

    logger.info(f"Tag {tag_id} deleted, pulled from {detached} task(s)")
    return detached
