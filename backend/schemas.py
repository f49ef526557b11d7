from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from typing import Optional, List, Literal
from enum import Enum


class TaskStatus(str, Enum):
    backlog = "backlog"
    todo = "todo"
    in_progress = "in_progress"
    review = "review"
    completed = "completed"
    archived = "archived"


class TaskPriority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class AssigneeRole(str, Enum):
    responsible = "responsible"
    accountable = "accountable"
    consulted = "consulted"
    informed = "informed"


class MemberRole(str, Enum):
    owner = "owner"
    admin = "admin"
    member = "member"


class ProjectStatus(str, Enum):
    planning = "planning"
    active = "active"
    on_hold = "on_hold"
    completed = "completed"
    cancelled = "cancelled"


# User schemas
class NotificationPreferences(BaseModel):
    email: bool = True
    push: bool = True


class Preferences(BaseModel):
    theme: Literal["light", "dark", "system"] = "system"
    default_view: Literal["list", "kanban", "calendar"] = "list"
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)


class UserSummary(BaseModel):
    id: int
    name: str
    email: EmailStr
    avatar: Optional[str] = None

    class Config:
        from_attributes = True


class User(UserSummary):
    preferences: Optional[Preferences] = None
    is_verified: bool = False
    last_active_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    avatar: Optional[str] = Field(None, max_length=512)
    preferences: Optional[Preferences] = None


# Category schemas
class CategoryBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field("#3498db", max_length=20)
    icon: str = Field("folder", max_length=50)


class CategoryCreate(CategoryBase):
    pass


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    color: Optional[str] = Field(None, max_length=20)
    icon: Optional[str] = Field(None, max_length=50)


class Category(CategoryBase):
    id: int
    owner_id: int
    is_default: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


# Tag schemas
class TagBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field("#3498db", max_length=20)


class TagCreate(TagBase):
    pass


class TagUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    color: Optional[str] = Field(None, max_length=20)


class Tag(TagBase):
    id: int
    owner_id: int
    created_at: datetime

    class Config:
        from_attributes = True


# Assignee schemas
class AssigneeCreate(BaseModel):
    user_id: int
    role: AssigneeRole = AssigneeRole.responsible


class Assignee(BaseModel):
    user_id: int
    role: AssigneeRole
    user: Optional[UserSummary] = None

    class Config:
        from_attributes = True


# Task schemas
class TaskBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.todo
    priority: TaskPriority = TaskPriority.medium
    due_date: Optional[datetime] = None
    estimated_time: int = Field(0, ge=0, description="Estimated minutes (must be >= 0)")
    actual_time: int = Field(0, ge=0, description="Actual minutes spent (must be >= 0)")


class TaskCreate(TaskBase):
    category_id: Optional[int] = None
    tag_ids: List[int] = Field(default_factory=list)
    project_id: Optional[int] = None
    parent_task_id: Optional[int] = None
    assignees: List[AssigneeCreate] = Field(default_factory=list)


class SubtaskCreate(TaskBase):
    category_id: Optional[int] = None
    tag_ids: List[int] = Field(default_factory=list)


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    estimated_time: Optional[int] = Field(None, ge=0, description="Estimated minutes (must be >= 0)")
    actual_time: Optional[int] = Field(None, ge=0, description="Actual minutes spent (must be >= 0)")
    category_id: Optional[int] = None
    tag_ids: Optional[List[int]] = None
    project_id: Optional[int] = None
    parent_task_id: Optional[int] = None


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


class TaskParentUpdate(BaseModel):
    parent_task_id: Optional[int] = None


class TaskDuplicate(BaseModel):
    include_subtasks: bool = False


class Task(TaskBase):
    id: int
    owner_id: int
    category_id: Optional[int] = None
    category: Optional[Category] = None
    tags: List[Tag] = Field(default_factory=list)
    project_id: Optional[int] = None
    parent_task_id: Optional[int] = None
    assignees: List[Assignee] = Field(default_factory=list)
    completed_at: Optional[datetime] = None
    is_overdue: bool = False
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TaskProgress(BaseModel):
    task_id: int
    total: int
    completed: int
    progress: int


class TaskDetail(Task):
    progress: int = 0
    subtask_count: int = 0


class TaskTree(Task):
    subtasks: List['TaskTree'] = Field(default_factory=list)
    progress: int = 0


class TaskDeleteResult(BaseModel):
    deleted_count: int
    deleted_task_ids: List[int]


# Member schemas
class MemberCreate(BaseModel):
    user_id: int
    role: Literal["admin", "member"] = "member"


class MemberRoleUpdate(BaseModel):
    role: MemberRole


class Member(BaseModel):
    user_id: int
    role: MemberRole
    joined_at: Optional[datetime] = None
    user: Optional[UserSummary] = None

    class Config:
        from_attributes = True


# Project schemas
class ProjectBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    color: str = Field("#3498db", max_length=20)
    icon: str = Field("briefcase", max_length=50)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: ProjectStatus = ProjectStatus.planning
    is_private: bool = False


class ProjectCreate(ProjectBase):
    pass


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    color: Optional[str] = Field(None, max_length=20)
    icon: Optional[str] = Field(None, max_length=50)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[ProjectStatus] = None
    is_private: Optional[bool] = None


class Project(ProjectBase):
    id: int
    owner_id: int
    team_id: Optional[int] = None
    members: List[Member] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


# Team schemas
class TeamBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    avatar: Optional[str] = Field(None, max_length=512)
    is_private: bool = False


class TeamCreate(TeamBase):
    pass


class TeamUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    avatar: Optional[str] = Field(None, max_length=512)
    is_private: Optional[bool] = None


class Team(TeamBase):
    id: int
    owner_id: int
    members: List[Member] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class DeleteResult(BaseModel):
    message: str
    detached_count: int = 0
