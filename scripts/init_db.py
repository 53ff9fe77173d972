import sys
from pathlib import Path
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from contextlib import contextmanager

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.doctrack.models import Base, Group, User
from app.doctrack.rbac import ADMINISTRATORS, PROGRAM_REVIEW_SUBCOMMITTEE


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed groups and the admin user in an idempotent way.
    """
    admin_username = (os.environ.get("ADMIN_USERNAME") or "admin").strip()
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@doctrack.local").strip().lower()

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///doctrack.db").strip()

    with _session_scope(db_url) as s:
        def ensure_group(name: str) -> Group:
            grp = s.query(Group).filter(Group.name == name).one_or_none()
            if not grp:
                grp = Group(name=name)
                s.add(grp)
            return grp

        g_admins = ensure_group(ADMINISTRATORS)
        ensure_group(PROGRAM_REVIEW_SUBCOMMITTEE)

        user = s.query(User).filter(User.username == admin_username).one_or_none()
        if not user:
            user = User(username=admin_username, email=admin_email, is_active=True)
            s.add(user)
        if g_admins not in user.groups:
            user.groups.append(g_admins)


def init_db(*, database_url: str | None = None) -> None:
    """
    Create tables directly (local development without Alembic), then seed.
    """
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///doctrack.db").strip()
    engine = create_engine(db_url, future=True)
    Base.metadata.create_all(bind=engine)
    engine.dispose()
    seed_only(database_url=db_url)


def main() -> None:
    init_db()
    print("Database initialized and seeded.", flush=True)


if __name__ == "__main__":
    main()
