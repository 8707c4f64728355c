import os

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from medibook.auth import jwt_handler  # noqa: E402
from medibook.auth.dependencies import get_current_user, require_role  # noqa: E402
from medibook.database import Base  # noqa: E402
from medibook.models.user import User  # noqa: E402
from medibook.routes.auth_routes import me  # noqa: E402


@pytest.fixture
def user_session_factory(monkeypatch: pytest.MonkeyPatch):
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=[User.__table__])

    db = testing_session_local()
    db.add(User(email='doctor@example.org', full_name='Doc Tor', role='doctor', hospital_id=4))
    db.commit()
    db.close()

    monkeypatch.setattr('medibook.auth.dependencies.SessionLocal', testing_session_local)
    yield testing_session_local
    Base.metadata.drop_all(bind=engine, tables=[User.__table__])


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_access_token_round_trips_subject() -> None:
    token = jwt_handler.create_access_token('doctor@example.org')

    payload = jwt_handler.decode_access_token(token)

    assert payload['sub'] == 'doctor@example.org'
    assert 'role' not in payload
    assert payload['exp'] > payload['iat']


def test_get_current_user_loads_user_from_token(user_session_factory) -> None:
    token = jwt_handler.create_access_token(' Doctor@Example.org ')

    user = get_current_user(credentials=_credentials(token))

    assert user.email == 'doctor@example.org'
    assert me(current_user=user) == {
        'email': 'doctor@example.org',
        'full_name': 'Doc Tor',
        'role': 'doctor',
        'hospital_id': 4,
    }


def test_get_current_user_rejects_garbage_token(user_session_factory) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_credentials('not-a-jwt'))

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token'


def test_get_current_user_rejects_expired_token(user_session_factory) -> None:
    token = jwt_handler.create_access_token('doctor@example.org', expires_minutes=-1)

    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_credentials(token))

    assert exception_info.value.status_code == 401


def test_get_current_user_rejects_unknown_user(user_session_factory) -> None:
    token = jwt_handler.create_access_token('nobody@example.org')

    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_credentials(token))

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'User not found'


def test_require_role_allows_listed_roles_and_forbids_others() -> None:
    doctor = User(email='doctor@example.org', role='doctor')
    patient = User(email='patient@example.org', role='patient')
    doctors_only = require_role('doctor', 'hospital_admin')

    assert doctors_only(current_user=doctor) is doctor

    with pytest.raises(HTTPException) as exception_info:
        doctors_only(current_user=patient)

    assert exception_info.value.status_code == 403
