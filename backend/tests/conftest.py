"""
Test configuration and fixtures for task tracker tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client with database dependency override
- Authentication helpers (JWT token generation)
- Common fixtures for users, projects, teams and tasks
"""

import os
import sys
import logging
from datetime import timedelta
from typing import Generator, Dict

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db
from main import app
import models
import membership
import taxonomy
from auth.security import hash_password, create_access_token

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    logger.debug("Creating test database")

    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        logger.debug("Test database cleaned up")


@pytest.fixture(scope="function")
def client(test_db: Session) -> TestClient:
    """
    Create FastAPI test client with database dependency override.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def make_user(test_db: Session, name: str, email: str, password: str = "password123") -> models.User:
    """Insert a user with the default categories and tags."""
    user = models.User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        is_active=True,
    )
    test_db.add(user)
    test_db.flush()
    taxonomy.seed_defaults(test_db, user.id)
    test_db.commit()
    test_db.refresh(user)
    logger.info(f"Created user {email} with ID: {user.id}")
    return user


@pytest.fixture(scope="function")
def owner_user(test_db: Session) -> models.User:
    return make_user(test_db, "Owner User", "owner@example.com")


@pytest.fixture(scope="function")
def member_user(test_db: Session) -> models.User:
    return make_user(test_db, "Member User", "member@example.com")


@pytest.fixture(scope="function")
def outsider_user(test_db: Session) -> models.User:
    return make_user(test_db, "Outsider User", "outsider@example.com")


def create_auth_token(user: models.User, expires_delta: timedelta = None) -> str:
    """
    Helper to create JWT access token for a user.

    Args:
        user: User to create token for
        expires_delta: Optional expiration time override

    Returns:
        JWT access token string
    """
    logger.debug(f"Creating auth token for user {user.id}")
    return create_access_token({"sub": str(user.id)}, expires_delta)


def auth_header(user: models.User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_auth_token(user)}"}


@pytest.fixture(scope="function")
def owner_headers(owner_user: models.User) -> Dict[str, str]:
    return auth_header(owner_user)


@pytest.fixture(scope="function")
def member_headers(member_user: models.User) -> Dict[str, str]:
    return auth_header(member_user)


@pytest.fixture(scope="function")
def outsider_headers(outsider_user: models.User) -> Dict[str, str]:
    return auth_header(outsider_user)


def make_task(test_db: Session, owner: models.User, title: str, parent: models.Task = None, **fields) -> models.Task:
    """Insert a task directly, bypassing the API."""
    task = models.Task(
        title=title,
        owner_id=owner.id,
        parent_task_id=parent.id if parent is not None else None,
        **fields,
    )
    test_db.add(task)
    test_db.commit()
    test_db.refresh(task)
    return task


@pytest.fixture(scope="function")
def project(test_db: Session, owner_user: models.User, member_user: models.User) -> models.Project:
    """
    Create a project owned by owner_user with member_user as a plain member.
    """
    logger.debug("Creating test project")
    project = models.Project(name="Test Project", description="A project for testing")
    membership.init_group(project, owner_user.id)
    project.members.append(
        models.ProjectMember(user_id=member_user.id, role=models.MemberRole.member)
    )
    test_db.add(project)
    test_db.commit()
    test_db.refresh(project)
    logger.info(f"Created test project with ID: {project.id}")
    return project


@pytest.fixture(scope="function")
def team(test_db: Session, owner_user: models.User, member_user: models.User) -> models.Team:
    """
    Create a team owned by owner_user with member_user as a plain member.
    """
    logger.debug("Creating test team")
    team = models.Team(name="Test Team", description="A team for testing")
    membership.init_group(team, owner_user.id)
    team.members.append(
        models.TeamMember(user_id=member_user.id, role=models.MemberRole.member)
    )
    test_db.add(team)
    test_db.commit()
    test_db.refresh(team)
    logger.info(f"Created test team with ID: {team.id}")
    return team
