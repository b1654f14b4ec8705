"""Helper utilities for tests."""

from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from auth import hash_password
from database import Base, create_db_engine
from models import User


def make_engine():
    engine = create_db_engine("sqlite+pysqlite:///:memory:", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return engine


def make_session(engine=None) -> Session:
    engine = engine or make_engine()
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_user(session: Session, username: str = "alice") -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        password_hash=hash_password("secret123"),
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user
