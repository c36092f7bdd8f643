"""
CampusConnect - Test Configuration and Fixtures
"""
import os
from typing import Any, Dict

import mongomock
import pytest
from faker import Faker
from fastapi.testclient import TestClient

os.environ['ENVIRONMENT'] = 'testing'
os.environ['DATABASE_NAME'] = 'campusconnect_test'

from main import app
from auth import create_session, hash_password
from database import create_document, ensure_indexes, get_db
from realtime import ConnectionRegistry
from schemas import Role, User

fake = Faker()


def make_user(db, role: Role = Role.STUDENT, password: str = 'password123', **extra) -> Dict[str, Any]:
    fields = {
        'name': fake.name(),
        'email': f'{fake.unique.user_name()}@college.edu',
        'department': 'Computer Science',
        'year': 2 if role == Role.STUDENT else None,
    }
    fields.update(extra)
    user = User(password_hash=hash_password(password), role=role, **fields)
    return create_document(db, 'user', user)


def bearer(db, user: Dict[str, Any]) -> Dict[str, str]:
    return {'Authorization': f"Bearer {create_session(db, user['_id'])}"}


@pytest.fixture
def db():
    """Fresh in-memory database for each test"""
    database = mongomock.MongoClient()['campusconnect_test']
    ensure_indexes(database)
    return database


@pytest.fixture
def registry() -> ConnectionRegistry:
    registry = ConnectionRegistry()
    app.state.connections = registry
    return registry


@pytest.fixture
def client(db, registry):
    """Test client with the database dependency pointed at mongomock"""
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def student(db):
    return make_user(db, Role.STUDENT)


@pytest.fixture
def other_student(db):
    return make_user(db, Role.STUDENT)


@pytest.fixture
def faculty(db):
    return make_user(db, Role.FACULTY)


@pytest.fixture
def admin_user(db):
    return make_user(db, Role.ADMIN)


@pytest.fixture
def student_headers(db, student):
    return bearer(db, student)


@pytest.fixture
def other_headers(db, other_student):
    return bearer(db, other_student)


@pytest.fixture
def faculty_headers(db, faculty):
    return bearer(db, faculty)


@pytest.fixture
def admin_headers(db, admin_user):
    return bearer(db, admin_user)


@pytest.fixture
def student_post(client, student_headers):
    """A Student-section post authored by ``student``"""
    response = client.post('/api/posts', headers=student_headers, json={
        'title': 'Lost my calculator',
        'content': 'Left it in the library on Monday.',
        'section': 'Student',
        'category': 'Lost & Found',
        'tags': ['library', 'lost'],
    })
    assert response.status_code == 201
    return response.json()['data']
