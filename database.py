import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    create_engine,
    delete,
    event,
    func,
    select,
    text,
    update,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()

# SQLite INTEGER is a signed 64-bit value; larger ids cannot name a row
MAX_ROW_ID = 2**63 - 1


# Timestamps are stored as naive UTC
def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=_utcnow)


class Task(Base):
    __tablename__ = "todos"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    is_completed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow)


class DuplicateEmailError(Exception):
    """Raised when a user is registered with an email that already exists."""

    def __init__(self, email: str):
        super().__init__(f"email already registered: {email}")
        self.email = email


class TodoStore:
    """
    Relational store for users and their todos.

    Every query touching a task that belongs to someone filters on the
    owner's user id in SQL; callers never get to read, change or delete a
    row by task id alone.

    Each method runs in its own session, so one store can be shared by all
    request threads.
    """

    def __init__(self, database_url: str) -> None:
        url = make_url(database_url)
        connect_args = {}
        if url.get_backend_name() == "sqlite":
            connect_args = {"check_same_thread": False, "timeout": 30.0}
            if url.database and url.database != ":memory:":
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(url, connect_args=connect_args)
        if url.get_backend_name() == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self._session = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)

        logger.info("TodoStore ready db=%s users=%s", url.render_as_string(hide_password=True), self.count_users())

    def close(self) -> None:
        self.engine.dispose()
        logger.info("TodoStore closed")

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.exception("Store health check failed")
            return False
        return True

    # ---- users ----

    def count_users(self) -> int:
        with self._session() as session:
            return session.scalar(select(func.count()).select_from(User))

    def create_user(self, email: str, password_hash: str) -> int:
        # The UNIQUE constraint on users.email is the only duplicate check;
        # a separate lookup before the insert would race with itself.
        user = User(email=email, password_hash=password_hash, created_at=_utcnow())
        with self._session() as session:
            session.add(user)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise DuplicateEmailError(email) from e
        return user.id

    def find_user_by_email(self, email: str) -> User | None:
        with self._session() as session:
            return session.scalars(select(User).where(User.email == email)).first()

    def get_user(self, user_id: int) -> User | None:
        with self._session() as session:
            return session.get(User, user_id)

    # ---- todos ----

    def list_tasks(self, user_id: int) -> list[Task]:
        stmt = (
            select(Task)
            .where(Task.user_id == user_id)
            .order_by(Task.created_at.desc(), Task.id.desc())
        )
        with self._session() as session:
            return list(session.scalars(stmt).all())

    def create_task(self, user_id: int, title: str) -> Task:
        now = _utcnow()
        task = Task(user_id=user_id, title=title, is_completed=False, created_at=now, updated_at=now)
        with self._session() as session:
            session.add(task)
            session.commit()
        return task

    def get_task(self, task_id: int, user_id: int | None = None) -> Task | None:
        if not _valid_row_id(task_id):
            return None
        stmt = select(Task).where(Task.id == task_id)
        if user_id is not None:
            stmt = stmt.where(Task.user_id == user_id)
        with self._session() as session:
            return session.scalars(stmt).first()

    def update_task(
        self,
        task_id: int,
        user_id: int,
        title: str | None = None,
        is_completed: bool | None = None,
    ) -> Task | None:
        """
        Apply a partial update to a task owned by ``user_id``.

        Only the given fields are written; ``updated_at`` is always refreshed.
        The UPDATE takes the database write lock and the row is read back
        before the transaction commits, so concurrent edits of the same task
        are applied one at a time and the returned row is exactly the one
        this call wrote. Returns None when no owned task matches, including
        ids too large to be stored.
        """
        if not _valid_row_id(task_id):
            return None

        values = {"updated_at": _utcnow()}
        if title is not None:
            values["title"] = title
        if is_completed is not None:
            values["is_completed"] = is_completed

        stmt = (
            update(Task)
            .where(Task.id == task_id, Task.user_id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._session() as session, session.begin():
            result = session.execute(stmt)
            if result.rowcount == 0:
                return None
            return session.get(Task, task_id)

    def delete_task(self, task_id: int, user_id: int) -> int:
        if not _valid_row_id(task_id):
            return 0
        stmt = delete(Task).where(Task.id == task_id, Task.user_id == user_id)
        with self._session() as session, session.begin():
            result = session.execute(stmt.execution_options(synchronize_session=False))
            return result.rowcount


def _valid_row_id(row_id: int) -> bool:
    return -MAX_ROW_ID - 1 <= row_id <= MAX_ROW_ID


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
