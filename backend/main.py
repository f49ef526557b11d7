from fastapi import FastAPI, HTTPException, Depends, Query, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import or_
from sqlalchemy.orm import Session
from typing import List, Optional
import logging
import os

from database import get_db
import models
import schemas
import hierarchy
import membership
import taxonomy
from errors import ConflictError, InvalidReferenceError, register_exception_handlers
from time_utils import is_overdue
from auth.routes import router as auth_router
from auth.dependencies import get_current_user
from auth.permissions import require_task_read, require_task_write

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Task Tracker API",
    description="Multi-user task tracking with subtasks, categories, tags, projects and teams",
    version="1.0.0"
)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Register authentication router
app.include_router(auth_router)


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ============== Helper Functions ==============

# Columns that may not be patched to null
NON_NULLABLE_TASK_FIELDS = {"title", "status", "priority", "estimated_time", "actual_time"}


def task_response(task: models.Task, schema=schemas.Task, **extra):
    """Serialize a task and attach computed fields."""
    data = schema.model_validate(task)
    return data.model_copy(update={
        "is_overdue": is_overdue(task.due_date, task.status.value),
        **extra,
    })


def load_readable_task(db: Session, task_id: int, user: models.User):
    task = hierarchy.get_task(db, task_id)
    project = hierarchy.get_task_project(db, task)
    require_task_read(task, user.id, project)
    return task, project


def load_writable_task(db: Session, task_id: int, user: models.User):
    task = hierarchy.get_task(db, task_id)
    project = hierarchy.get_task_project(db, task)
    require_task_write(task, user.id, project)
    return task, project


def build_assignees(
    db: Session, project: Optional[models.Project], assignees: List[schemas.AssigneeCreate]
) -> List[models.TaskAssignee]:
    """
    Validate requested assignees. Users must exist and, for project tasks,
    belong to the project.
    """
    seen = set()
    result = []
    for assignee in assignees:
        if assignee.user_id in seen:
            raise ConflictError("User is already assigned to this task")
        seen.add(assignee.user_id)
        membership.get_user(db, assignee.user_id)
        if project is not None and not membership.find_member(project, assignee.user_id):
            logger.info(f"Assignee {assignee.user_id} is not a member of project {project.id}")
            raise InvalidReferenceError("Assignee must be a member of the task's project")
        result.append(models.TaskAssignee(user_id=assignee.user_id, role=models.AssigneeRole(assignee.role.value)))
    return result


def apply_task_patch(
    db: Session, task: models.Task, task_update: schemas.TaskUpdate, user: models.User
) -> models.Task:
    """
    Apply a field patch to a task and commit.

    References (category, tags, project, parent) are all validated before any
    field is written. The owner is not patchable.
    """
    update_data = task_update.model_dump(exclude_unset=True)

    for key in NON_NULLABLE_TASK_FIELDS:
        if key in update_data and update_data[key] is None:
            raise HTTPException(status_code=400, detail=f"{key} cannot be null")

    if "category_id" in update_data:
        taxonomy.resolve_category(db, update_data["category_id"], task.owner_id)
    tags = None
    if "tag_ids" in update_data:
        tags = taxonomy.resolve_tags(db, update_data.pop("tag_ids") or [], task.owner_id)
    if update_data.get("project_id") is not None:
        membership.resolve_project(db, update_data["project_id"], user.id)
    if "parent_task_id" in update_data:
        hierarchy.reparent(db, task, update_data.pop("parent_task_id"))

    if "status" in update_data:
        hierarchy.apply_status(task, update_data.pop("status"))
    if "priority" in update_data:
        task.priority = models.TaskPriority(update_data.pop("priority"))
    for key, value in update_data.items():
        setattr(task, key, value)
    if tags is not None:
        task.tags = tags

    db.commit()
    db.refresh(task)
    return task


def visible_task_query(db: Session, user_id: int):
    """Tasks the user owns or is assigned to."""
    assigned_ids = [
        row.task_id
        for row in db.query(models.TaskAssignee.task_id).filter(models.TaskAssignee.user_id == user_id).all()
    ]
    return db.query(models.Task).filter(
        or_(models.Task.owner_id == user_id, models.Task.id.in_(assigned_ids))
    )


# ============== Tasks ==============

@app.get("/api/tasks", response_model=List[schemas.Task])
def list_tasks(
    status_filter: Optional[schemas.TaskStatus] = Query(None, alias="status"),
    priority: Optional[schemas.TaskPriority] = None,
    category_id: Optional[int] = None,
    tag_id: Optional[int] = None,
    project_id: Optional[int] = None,
    root_only: bool = False,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List tasks the user owns or is assigned to, or every task of a project the user belongs to."""
    logger.debug(f"User {current_user.id} listing tasks")

    if project_id is not None:
        project = membership.get_project(db, project_id)
        membership.require_group_member(project, current_user.id)
        query = db.query(models.Task).filter(models.Task.project_id == project_id)
    else:
        query = visible_task_query(db, current_user.id)

    if status_filter is not None:
        query = query.filter(models.Task.status == models.TaskStatus(status_filter.value))
    if priority is not None:
        query = query.filter(models.Task.priority == models.TaskPriority(priority.value))
    if category_id is not None:
        query = query.filter(models.Task.category_id == category_id)
    if tag_id is not None:
        query = query.filter(models.Task.tags.any(models.Tag.id == tag_id))
    if root_only:
        query = query.filter(models.Task.parent_task_id.is_(None))

    tasks = query.order_by(models.Task.created_at.desc(), models.Task.id.desc()).all()
    logger.info(f"User {current_user.id} retrieved {len(tasks)} tasks")
    return [task_response(t) for t in tasks]


@app.get("/api/tasks/with-subtasks", response_model=List[schemas.TaskTree])
def list_tasks_with_subtasks(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """The user's task forest: root tasks with their subtasks nested under them."""
    tasks = (
        db.query(models.Task)
        .filter(models.Task.owner_id == current_user.id)
        .order_by(models.Task.id)
        .all()
    )

    def to_tree(node: dict) -> schemas.TaskTree:
        children = [to_tree(child) for child in node["subtasks"]]
        progress = hierarchy.progress_from_subtasks(child["task"] for child in node["subtasks"])
        base = task_response(node["task"])
        return schemas.TaskTree(**base.model_dump(), subtasks=children, progress=progress["progress"])

    return [to_tree(root) for root in hierarchy.build_forest(tasks)]


@app.post("/api/tasks", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
def create_task(
    task: schemas.TaskCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a task owned by the current user."""
    logger.info(f"User {current_user.id} creating task: {task.title}")
    owner_id = current_user.id

    category = taxonomy.resolve_category(db, task.category_id, owner_id)
    tags = taxonomy.resolve_tags(db, task.tag_ids, owner_id)
    project = membership.resolve_project(db, task.project_id, owner_id)
    if task.parent_task_id is not None:
        hierarchy.validate_parent(db, task.parent_task_id, owner_id)
    assignees = build_assignees(db, project, task.assignees)

    db_task = models.Task(
        title=task.title,
        description=task.description,
        priority=models.TaskPriority(task.priority.value),
        due_date=task.due_date,
        owner_id=owner_id,
        category_id=category.id if category else None,
        project_id=project.id if project else None,
        parent_task_id=task.parent_task_id,
        estimated_time=task.estimated_time,
        actual_time=task.actual_time,
    )
    hierarchy.apply_status(db_task, task.status)
    db_task.tags = tags
    db_task.assignees = assignees

    db.add(db_task)
    db.commit()
    db.refresh(db_task)

    logger.info(f"Task created successfully: id={db_task.id}")
    return task_response(db_task)


@app.get("/api/tasks/{task_id}", response_model=schemas.TaskDetail)
def get_task(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get a task with its subtask progress."""
    task, _ = load_readable_task(db, task_id, current_user)
    progress = hierarchy.subtask_progress(db, task_id)
    return task_response(
        task, schemas.TaskDetail, progress=progress["progress"], subtask_count=progress["total"]
    )


@app.put("/api/tasks/{task_id}", response_model=schemas.Task)
def update_task(
    task_id: int,
    task_update: schemas.TaskUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Patch task fields."""
    logger.info(f"User {current_user.id} updating task {task_id}")
    task, _ = load_writable_task(db, task_id, current_user)
    apply_task_patch(db, task, task_update, current_user)

    logger.info(f"Task {task_id} updated successfully")
    return task_response(task)


@app.patch("/api/tasks/{task_id}/status", response_model=schemas.Task)
def update_task_status(
    task_id: int,
    status_update: schemas.TaskStatusUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    task, _ = load_writable_task(db, task_id, current_user)
    old_status = task.status.value
    hierarchy.apply_status(task, status_update.status)
    db.commit()
    db.refresh(task)

    logger.info(f"Task {task_id} status {old_status} -> {task.status.value}")
    return task_response(task)


@app.patch("/api/tasks/{task_id}/parent", response_model=schemas.Task)
def update_task_parent(
    task_id: int,
    parent_update: schemas.TaskParentUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Move a task under another task, or detach it with parent_task_id=null."""
    task, _ = load_writable_task(db, task_id, current_user)
    hierarchy.reparent(db, task, parent_update.parent_task_id)
    db.commit()
    db.refresh(task)

    logger.info(f"Task {task_id} parent set to {task.parent_task_id}")
    return task_response(task)


@app.post("/api/tasks/{task_id}/archive", response_model=schemas.Task)
def archive_task(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Soft delete: the task stays in place with status archived."""
    task, _ = load_writable_task(db, task_id, current_user)
    hierarchy.apply_status(task, models.TaskStatus.archived)
    db.commit()
    db.refresh(task)

    logger.info(f"Task {task_id} archived by user {current_user.id}")
    return task_response(task)


@app.delete("/api/tasks/{task_id}", response_model=schemas.TaskDeleteResult)
def delete_task(
    task_id: int,
    force: bool = False,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a task. Fails with 409 if it has subtasks unless force=true."""
    logger.debug(f"User {current_user.id} deleting task {task_id} (force={force})")
    task, _ = load_writable_task(db, task_id, current_user)
    deleted = hierarchy.delete_task(db, task, force=force)
    return {"deleted_count": len(deleted), "deleted_task_ids": deleted}


@app.delete("/api/tasks/{task_id}/with-subtasks", response_model=schemas.TaskDeleteResult)
def delete_task_with_subtasks(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a task together with all of its descendants."""
    task, _ = load_writable_task(db, task_id, current_user)
    deleted = hierarchy.delete_task(db, task, force=True)
    return {"deleted_count": len(deleted), "deleted_task_ids": deleted}


@app.post("/api/tasks/{task_id}/duplicate", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
def duplicate_task(
    task_id: int,
    options: schemas.TaskDuplicate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    task, _ = load_writable_task(db, task_id, current_user)
    copy = hierarchy.duplicate_task(db, task, include_subtasks=options.include_subtasks)
    return task_response(copy)


# ============== Subtasks ==============

@app.get("/api/tasks/{task_id}/subtasks", response_model=List[schemas.Task])
def list_subtasks(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    load_readable_task(db, task_id, current_user)
    subtasks = (
        db.query(models.Task)
        .filter(models.Task.parent_task_id == task_id)
        .order_by(models.Task.id)
        .all()
    )
    logger.debug(f"Found {len(subtasks)} subtask(s) for task {task_id}")
    return [task_response(s) for s in subtasks]


@app.post("/api/tasks/{task_id}/subtasks", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
def create_subtask(
    task_id: int,
    subtask: schemas.SubtaskCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Create a subtask under task_id. The subtask is owned by the current user,
    who must also own the parent; category and project default to the parent's.
    """
    parent, _ = load_writable_task(db, task_id, current_user)
    hierarchy.validate_parent(db, parent.id, current_user.id)

    category_id = subtask.category_id if subtask.category_id is not None else parent.category_id
    category = taxonomy.resolve_category(db, category_id, current_user.id)
    tags = taxonomy.resolve_tags(db, subtask.tag_ids, current_user.id)

    db_task = models.Task(
        title=subtask.title,
        description=subtask.description,
        priority=models.TaskPriority(subtask.priority.value),
        due_date=subtask.due_date,
        owner_id=current_user.id,
        category_id=category.id if category else None,
        project_id=parent.project_id,
        parent_task_id=parent.id,
        estimated_time=subtask.estimated_time,
        actual_time=subtask.actual_time,
    )
    hierarchy.apply_status(db_task, subtask.status)
    db_task.tags = tags

    db.add(db_task)
    db.commit()
    db.refresh(db_task)

    logger.info(f"Subtask {db_task.id} created under task {task_id}")
    return task_response(db_task)


@app.get("/api/tasks/{task_id}/subtasks/status", response_model=schemas.TaskProgress)
def get_subtask_status(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Completion of direct subtasks: total, completed and rounded percentage."""
    load_readable_task(db, task_id, current_user)
    progress = hierarchy.subtask_progress(db, task_id)
    return schemas.TaskProgress(task_id=task_id, **progress)


@app.patch("/api/tasks/{task_id}/subtasks/complete-all", response_model=List[schemas.Task])
def complete_all_subtasks(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    task, _ = load_writable_task(db, task_id, current_user)
    subtasks = hierarchy.complete_all_subtasks(db, task)
    return [task_response(s) for s in subtasks]


def load_subtask(db: Session, task_id: int, subtask_id: int, user: models.User, write: bool = False):
    """Resolve a subtask under its parent and check access on the subtask itself."""
    hierarchy.get_task(db, task_id)
    subtask = hierarchy.get_subtask(db, task_id, subtask_id)
    project = hierarchy.get_task_project(db, subtask)
    if write:
        require_task_write(subtask, user.id, project)
    else:
        require_task_read(subtask, user.id, project)
    return subtask


@app.get("/api/tasks/{task_id}/subtasks/{subtask_id}", response_model=schemas.Task)
def get_subtask(
    task_id: int,
    subtask_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    subtask = load_subtask(db, task_id, subtask_id, current_user)
    return task_response(subtask)


@app.put("/api/tasks/{task_id}/subtasks/{subtask_id}", response_model=schemas.Task)
def update_subtask(
    task_id: int,
    subtask_id: int,
    subtask_update: schemas.TaskUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Patch a subtask. A parent_task_id in the patch moves it (null detaches it)."""
    subtask = load_subtask(db, task_id, subtask_id, current_user, write=True)
    apply_task_patch(db, subtask, subtask_update, current_user)

    logger.info(f"Subtask {subtask_id} of task {task_id} updated by user {current_user.id}")
    return task_response(subtask)


@app.delete("/api/tasks/{task_id}/subtasks/{subtask_id}", response_model=schemas.TaskDeleteResult)
def delete_subtask(
    task_id: int,
    subtask_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a subtask. Fails with 409 while it has subtasks of its own."""
    subtask = load_subtask(db, task_id, subtask_id, current_user, write=True)
    deleted = hierarchy.delete_task(db, subtask, force=False)
    return {"deleted_count": len(deleted), "deleted_task_ids": deleted}


# ============== Assignees ==============

@app.post("/api/tasks/{task_id}/assignees", response_model=schemas.Task, status_code=status.HTTP_201_CREATED)
def add_assignee(
    task_id: int,
    assignee: schemas.AssigneeCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    task, project = load_writable_task(db, task_id, current_user)

    if any(a.user_id == assignee.user_id for a in task.assignees):
        raise ConflictError("User is already assigned to this task")
    task.assignees.extend(build_assignees(db, project, [assignee]))

    db.commit()
    db.refresh(task)

    logger.info(f"User {assignee.user_id} assigned to task {task_id} as {assignee.role.value}")
    return task_response(task)


@app.delete("/api/tasks/{task_id}/assignees/{user_id}", response_model=schemas.Task)
def remove_assignee(
    task_id: int,
    user_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    task, _ = load_writable_task(db, task_id, current_user)

    existing = next((a for a in task.assignees if a.user_id == user_id), None)
    if existing is None:
        raise HTTPException(status_code=404, detail="Assignee not found")
    task.assignees.remove(existing)

    db.commit()
    db.refresh(task)

    logger.info(f"User {user_id} unassigned from task {task_id}")
    return task_response(task)


# ============== Categories ==============

@app.get("/api/categories", response_model=List[schemas.Category])
def list_categories(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return (
        db.query(models.Category)
        .filter(models.Category.owner_id == current_user.id)
        .order_by(models.Category.name)
        .all()
    )


@app.post("/api/categories", response_model=schemas.Category, status_code=status.HTTP_201_CREATED)
def create_category(
    category: schemas.CategoryCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    taxonomy.ensure_unique_category_name(db, category.name, current_user.id)

    db_category = models.Category(**category.model_dump(), owner_id=current_user.id)
    db.add(db_category)
    db.commit()
    db.refresh(db_category)

    logger.info(f"Category created: {db_category.name} (ID: {db_category.id})")
    return db_category


@app.get("/api/categories/{category_id}", response_model=schemas.Category)
def get_category(
    category_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return taxonomy.get_owned_category(db, category_id, current_user.id)


@app.put("/api/categories/{category_id}", response_model=schemas.Category)
def update_category(
    category_id: int,
    category_update: schemas.CategoryUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    category = taxonomy.get_owned_category(db, category_id, current_user.id)
    update_data = category_update.model_dump(exclude_unset=True, exclude_none=True)

    if "name" in update_data:
        taxonomy.ensure_unique_category_name(db, update_data["name"], current_user.id, exclude_id=category_id)
    for key, value in update_data.items():
        setattr(category, key, value)

    db.commit()
    db.refresh(category)
    return category


@app.delete("/api/categories/{category_id}", response_model=schemas.DeleteResult)
def delete_category(
    category_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a category; tasks using it keep existing without a category."""
    category = taxonomy.get_owned_category(db, category_id, current_user.id)
    detached = taxonomy.delete_category(db, category)
    return {"message": "Category deleted", "detached_count": detached}


@app.get("/api/categories/{category_id}/tasks", response_model=List[schemas.Task])
def list_category_tasks(
    category_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    taxonomy.get_owned_category(db, category_id, current_user.id)
    tasks = (
        db.query(models.Task)
        .filter(models.Task.category_id == category_id, models.Task.owner_id == current_user.id)
        .order_by(models.Task.created_at.desc(), models.Task.id.desc())
        .all()
    )
    return [task_response(t) for t in tasks]


# ============== Tags ==============

@app.get("/api/tags", response_model=List[schemas.Tag])
def list_tags(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return (
        db.query(models.Tag)
        .filter(models.Tag.owner_id == current_user.id)
        .order_by(models.Tag.name)
        .all()
    )


@app.post("/api/tags", response_model=schemas.Tag, status_code=status.HTTP_201_CREATED)
def create_tag(
    tag: schemas.TagCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    taxonomy.ensure_unique_tag_name(db, tag.name, current_user.id)

    db_tag = models.Tag(**tag.model_dump(), owner_id=current_user.id)
    db.add(db_tag)
    db.commit()
    db.refresh(db_tag)

    logger.info(f"Tag created: {db_tag.name} (ID: {db_tag.id})")
    return db_tag


@app.get("/api/tags/{tag_id}", response_model=schemas.Tag)
def get_tag(
    tag_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return taxonomy.get_owned_tag(db, tag_id, current_user.id)


@app.put("/api/tags/{tag_id}", response_model=schemas.Tag)
def update_tag(
    tag_id: int,
    tag_update: schemas.TagUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    tag = taxonomy.get_owned_tag(db, tag_id, current_user.id)
    update_data = tag_update.model_dump(exclude_unset=True, exclude_none=True)

    if "name" in update_data:
        taxonomy.ensure_unique_tag_name(db, update_data["name"], current_user.id, exclude_id=tag_id)
    for key, value in update_data.items():
        setattr(tag, key, value)

    db.commit()
    db.refresh(tag)
    return tag


@app.delete("/api/tags/{tag_id}", response_model=schemas.DeleteResult)
def delete_tag(
    tag_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a tag and pull it from every task carrying it."""
    tag = taxonomy.get_owned_tag(db, tag_id, current_user.id)
    detached = taxonomy.delete_tag(db, tag)
    return {"message": "Tag deleted", "detached_count": detached}


@app.get("/api/tags/{tag_id}/tasks", response_model=List[schemas.Task])
def list_tag_tasks(
    tag_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    taxonomy.get_owned_tag(db, tag_id, current_user.id)
    tasks = (
        db.query(models.Task)
        .filter(models.Task.tags.any(models.Tag.id == tag_id), models.Task.owner_id == current_user.id)
        .order_by(models.Task.created_at.desc(), models.Task.id.desc())
        .all()
    )
    return [task_response(t) for t in tasks]


# ============== Projects ==============

@app.get("/api/projects", response_model=List[schemas.Project])
def list_projects(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List projects the current user is a member of."""
    project_ids = [
        row.project_id
        for row in db.query(models.ProjectMember.project_id)
        .filter(models.ProjectMember.user_id == current_user.id)
        .all()
    ]
    projects = (
        db.query(models.Project)
        .filter(models.Project.id.in_(project_ids))
        .order_by(models.Project.updated_at.desc(), models.Project.id.desc())
        .all()
    )
    logger.info(f"User {current_user.id} retrieved {len(projects)} projects")
    return projects


@app.post("/api/projects", response_model=schemas.Project, status_code=status.HTTP_201_CREATED)
def create_project(
    project: schemas.ProjectCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a project with the current user as owner."""
    membership.ensure_unique_name(db, models.Project, project.name, current_user.id)

    db_project = models.Project(**project.model_dump())
    membership.init_group(db_project, current_user.id)
    db.add(db_project)
    db.commit()
    db.refresh(db_project)

    logger.info(f"Project created: {db_project.name} (ID: {db_project.id}) by user {current_user.id}")
    return db_project


@app.get("/api/projects/{project_id}", response_model=schemas.Project)
def get_project(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    project = membership.get_project(db, project_id)
    membership.require_group_member(project, current_user.id)
    return project


@app.put("/api/projects/{project_id}", response_model=schemas.Project)
def update_project(
    project_id: int,
    project_update: schemas.ProjectUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update project details (requires owner or admin)."""
    project = membership.get_project(db, project_id)
    membership.require_group_manager(project, current_user.id)

    update_data = project_update.model_dump(exclude_unset=True)
    if update_data.get("name") is not None:
        membership.ensure_unique_name(
            db, models.Project, update_data["name"], project.owner_id, exclude_id=project_id
        )
    for key in ("name", "color", "icon", "status", "is_private"):
        if key in update_data and update_data[key] is None:
            update_data.pop(key)
    if "status" in update_data:
        update_data["status"] = models.ProjectStatus(update_data["status"])
    for key, value in update_data.items():
        setattr(project, key, value)

    db.commit()
    db.refresh(project)

    logger.info(f"Project {project_id} updated by user {current_user.id}")
    return project


@app.delete("/api/projects/{project_id}", response_model=schemas.DeleteResult)
def delete_project(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a project (owner only). Its tasks are kept and detached."""
    project = membership.get_project(db, project_id)
    detached = membership.delete_project(db, project, current_user.id)
    return {"message": "Project deleted", "detached_count": detached}


@app.get("/api/projects/{project_id}/tasks", response_model=List[schemas.Task])
def list_project_tasks(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    project = membership.get_project(db, project_id)
    membership.require_group_member(project, current_user.id)
    tasks = (
        db.query(models.Task)
        .filter(models.Task.project_id == project_id)
        .order_by(models.Task.updated_at.desc(), models.Task.id.desc())
        .all()
    )
    return [task_response(t) for t in tasks]


@app.get("/api/projects/{project_id}/members", response_model=List[schemas.Member])
def list_project_members(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    project = membership.get_project(db, project_id)
    membership.require_group_member(project, current_user.id)
    return project.members


@app.post("/api/projects/{project_id}/members", response_model=schemas.Member, status_code=status.HTTP_201_CREATED)
def add_project_member(
    project_id: int,
    member: schemas.MemberCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    project = membership.get_project(db, project_id)
    return membership.add_member(db, project, current_user.id, member.user_id, member.role)


@app.put("/api/projects/{project_id}/members/{user_id}", response_model=schemas.Member)
def update_project_member(
    project_id: int,
    user_id: int,
    member_update: schemas.MemberRoleUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Change a member's role. Setting role=owner transfers ownership."""
    project = membership.get_project(db, project_id)
    return membership.change_role(db, project, current_user.id, user_id, member_update.role.value)


@app.delete("/api/projects/{project_id}/members/{user_id}")
def remove_project_member(
    project_id: int,
    user_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    project = membership.get_project(db, project_id)
    membership.remove_member(db, project, current_user.id, user_id)
    return {"message": "Member removed from project"}


# ============== Teams ==============

@app.get("/api/teams", response_model=List[schemas.Team])
def list_teams(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List all teams the current user is a member of."""
    team_ids = [
        row.team_id
        for row in db.query(models.TeamMember.team_id).filter(models.TeamMember.user_id == current_user.id).all()
    ]
    teams = (
        db.query(models.Team)
        .filter(models.Team.id.in_(team_ids))
        .order_by(models.Team.updated_at.desc(), models.Team.id.desc())
        .all()
    )
    logger.info(f"User {current_user.id} retrieved {len(teams)} teams")
    return teams


@app.post("/api/teams", response_model=schemas.Team, status_code=status.HTTP_201_CREATED)
def create_team(
    team: schemas.TeamCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a new team with the creator as owner."""
    membership.ensure_unique_name(db, models.Team, team.name, current_user.id)

    db_team = models.Team(**team.model_dump())
    membership.init_group(db_team, current_user.id)
    db.add(db_team)
    db.commit()
    db.refresh(db_team)

    logger.info(f"Team created: {db_team.name} (ID: {db_team.id}) by user {current_user.id}")
    return db_team


@app.get("/api/teams/{team_id}", response_model=schemas.Team)
def get_team(
    team_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    team = membership.get_team(db, team_id)
    membership.require_group_member(team, current_user.id)
    return team


@app.put("/api/teams/{team_id}", response_model=schemas.Team)
def update_team(
    team_id: int,
    team_update: schemas.TeamUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update team details (requires owner or admin)."""
    team = membership.get_team(db, team_id)
    membership.require_group_manager(team, current_user.id)

    update_data = team_update.model_dump(exclude_unset=True)
    if update_data.get("name") is not None:
        membership.ensure_unique_name(db, models.Team, update_data["name"], team.owner_id, exclude_id=team_id)
    for key in ("name", "is_private"):
        if key in update_data and update_data[key] is None:
            update_data.pop(key)
    for key, value in update_data.items():
        setattr(team, key, value)

    db.commit()
    db.refresh(team)

    logger.info(f"Team updated: {team.name} (ID: {team_id}) by user {current_user.id}")
    return team


@app.delete("/api/teams/{team_id}", response_model=schemas.DeleteResult)
def delete_team(
    team_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a team (owner only). Its projects are kept and detached."""
    team = membership.get_team(db, team_id)
    detached = membership.delete_team(db, team, current_user.id)
    return {"message": "Team deleted", "detached_count": detached}


@app.get("/api/teams/{team_id}/members", response_model=List[schemas.Member])
def list_team_members(
    team_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    team = membership.get_team(db, team_id)
    membership.require_group_member(team, current_user.id)
    return team.members


@app.post("/api/teams/{team_id}/members", response_model=schemas.Member, status_code=status.HTTP_201_CREATED)
def add_team_member(
    team_id: int,
    member: schemas.MemberCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    team = membership.get_team(db, team_id)
    return membership.add_member(db, team, current_user.id, member.user_id, member.role)


@app.put("/api/teams/{team_id}/members/{user_id}", response_model=schemas.Member)
def update_team_member(
    team_id: int,
    user_id: int,
    member_update: schemas.MemberRoleUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Change a member's role. Setting role=owner transfers ownership."""
    team = membership.get_team(db, team_id)
    return membership.change_role(db, team, current_user.id, user_id, member_update.role.value)


@app.delete("/api/teams/{team_id}/members/{user_id}")
def remove_team_member(
    team_id: int,
    user_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    team = membership.get_team(db, team_id)
    membership.remove_member(db, team, current_user.id, user_id)
    return {"message": "Team member removed"}


@app.get("/api/teams/{team_id}/projects", response_model=List[schemas.Project])
def list_team_projects(
    team_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    team = membership.get_team(db, team_id)
    membership.require_group_member(team, current_user.id)
    return (
        db.query(models.Project)
        .filter(models.Project.team_id == team_id)
        .order_by(models.Project.updated_at.desc(), models.Project.id.desc())
        .all()
    )


@app.post("/api/teams/{team_id}/projects", response_model=schemas.Project, status_code=status.HTTP_201_CREATED)
def create_team_project(
    team_id: int,
    project: schemas.ProjectCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a project attached to a team (requires team owner or admin)."""
    team = membership.get_team(db, team_id)
    membership.require_group_manager(team, current_user.id)
    membership.ensure_unique_name(db, models.Project, project.name, current_user.id)

    db_project = models.Project(**project.model_dump(), team_id=team.id)
    membership.init_group(db_project, current_user.id)
    db.add(db_project)
    db.commit()
    db.refresh(db_project)

    logger.info(f"Project {db_project.id} created in team {team_id} by user {current_user.id}")
    return db_project
