"""SQLAlchemy tables and engine setup.

Tables:
  semesters            scheduling periods
  staff, children      local mirror of the external user directory
  schedule_entries     dated activity slots (optimistic ``version`` column)
  entry_children       many-to-many link between entries and children
  transfer_records     append-only audit of children moved between entries
  semester_workbooks   verbatim bytes of the last imported workbook

Transfer records keep plain entry ids without foreign keys: a re-import
deletes the entries they point to, and the audit trail must survive it.
"""

from datetime import date, datetime
from pathlib import Path

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    LargeBinary,
    SmallInteger,
    String,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    relationship,
    sessionmaker,
)

from planning.logging import get_logger
from planning.utils import utcnow

log = get_logger(__name__)


class Base(DeclarativeBase):
    pass


class SemesterRow(Base):
    __tablename__ = "semesters"
    __table_args__ = (CheckConstraint("start_date < end_date", name="ck_semester_dates"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120))
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class StaffRow(Base):
    __tablename__ = "staff"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    first_name: Mapped[str] = mapped_column(String(120))
    last_name: Mapped[str] = mapped_column(String(120))


class ChildRow(Base):
    __tablename__ = "children"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    first_name: Mapped[str] = mapped_column(String(120))
    last_name: Mapped[str] = mapped_column(String(120))


class ScheduleEntryRow(Base):
    __tablename__ = "schedule_entries"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_entry_times"),
        CheckConstraint("day_of_week BETWEEN 1 AND 7", name="ck_entry_weekday"),
        # Ids are never reused, transfer records outlive their entries
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    semester_id: Mapped[int] = mapped_column(
        ForeignKey("semesters.id", ondelete="RESTRICT"), index=True
    )
    staff_id: Mapped[str] = mapped_column(ForeignKey("staff.id"), index=True)
    day_of_week: Mapped[int] = mapped_column(SmallInteger)
    start_time: Mapped[datetime] = mapped_column(DateTime, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime)
    activity: Mapped[str] = mapped_column(String(255))
    cancelled: Mapped[bool] = mapped_column(Boolean, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    children: Mapped[list["EntryChildRow"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="EntryChildRow.child_id",
    )

    __mapper_args__ = {"version_id_col": version}


class EntryChildRow(Base):
    __tablename__ = "entry_children"

    entry_id: Mapped[int] = mapped_column(
        ForeignKey("schedule_entries.id", ondelete="CASCADE"), primary_key=True
    )
    child_id: Mapped[int] = mapped_column(
        ForeignKey("children.id"), primary_key=True, index=True
    )

    entry: Mapped[ScheduleEntryRow] = relationship(back_populates="children")
    child: Mapped[ChildRow] = relationship(lazy="joined")


class TransferRow(Base):
    __tablename__ = "transfer_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    semester_id: Mapped[int] = mapped_column(Integer, index=True)
    child_id: Mapped[int] = mapped_column(Integer, index=True)
    source_entry_id: Mapped[int] = mapped_column(Integer, index=True)
    target_entry_id: Mapped[int] = mapped_column(Integer, index=True)
    transferred_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)


class WorkbookRow(Base):
    __tablename__ = "semester_workbooks"

    semester_id: Mapped[int] = mapped_column(
        ForeignKey("semesters.id", ondelete="CASCADE"), primary_key=True
    )
    filename: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sha256: Mapped[str] = mapped_column(String(64))
    content: Mapped[bytes] = mapped_column(LargeBinary)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Engine and session factory for one database URL."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        parsed = make_url(url)
        if parsed.get_backend_name() == "sqlite" and parsed.database not in (None, "", ":memory:"):
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)

        self.engine: Engine = create_engine(url, echo=echo)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.sessions = sessionmaker(self.engine, expire_on_commit=False)

        log.debug("database_configured", backend=self.engine.dialect.name)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def session(self) -> Session:
        return self.sessions()

    def dispose(self) -> None:
        self.engine.dispose()
