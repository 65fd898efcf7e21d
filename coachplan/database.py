"""
SQLAlchemy Database Models for Accepted Plans

Provides persistent storage for:
- Plan records (one per logical request, keyed by request_key)
- Plan days (workout days or nutrition days)
- Plan items (exercises or meals)

Only accepted plans are stored; the pipeline never hands a failed plan to
the repository.
"""

import logging
import uuid
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    create_engine,
)
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from coachplan.schemas import GenerationContext, PlanKind

logger = logging.getLogger(__name__)

Base = declarative_base()


class PlanRecord(Base):
    """
    Accepted plan with request metadata.

    Attributes:
        id: Primary key
        request_key: Idempotency key of the logical request
        user_id: Requesting user
        plan_kind: 'workout' or 'nutrition'
        goal: Canonical goal of the plan
        diet: Diet token (nutrition only)
        plan_data: Full validated plan document as JSON
        warnings: Auto-corrections made while accepting the plan
        created_at: When the plan was first saved
        updated_at: When the plan was last replaced
    """

    __tablename__ = "plans"

    id = Column(Integer, primary_key=True)
    request_key = Column(String, unique=True, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    plan_kind = Column(String, nullable=False)
    goal = Column(String, nullable=False)
    diet = Column(String, nullable=True)
    plan_data = Column(JSON, nullable=False)
    warnings = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    days = relationship(
        "PlanDayRecord",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="PlanDayRecord.day_index",
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "request_key": self.request_key,
            "user_id": self.user_id,
            "plan_kind": self.plan_kind,
            "goal": self.goal,
            "diet": self.diet,
            "plan": self.plan_data,
            "warnings": self.warnings or [],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self):
        return f"<PlanRecord(id={self.id}, kind='{self.plan_kind}', user='{self.user_id}', days={len(self.days)})>"


class PlanDayRecord(Base):
    """
    One day of a stored plan.

    Attributes:
        id: Primary key
        plan_id: Foreign key to plans table
        day_index: 1-based day position
        title: Day name (workout) or "Day N" (nutrition)
        total: total_sets (workout) or total calories (nutrition)
        details: muscles_focus (workout) or macro totals (nutrition)
    """

    __tablename__ = "plan_days"

    id = Column(Integer, primary_key=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False, index=True)
    day_index = Column(Integer, nullable=False)
    title = Column(String, nullable=False)
    total = Column(Integer, nullable=False, default=0)
    details = Column(JSON, nullable=True)

    # Relationships
    plan = relationship("PlanRecord", back_populates="days")
    items = relationship(
        "PlanItemRecord",
        back_populates="day",
        cascade="all, delete-orphan",
        order_by="PlanItemRecord.item_index",
    )

    def __repr__(self):
        return f"<PlanDayRecord(day={self.day_index}, title='{self.title}', items={len(self.items)})>"


class PlanItemRecord(Base):
    """
    One exercise or meal of a stored day.

    Attributes:
        id: Primary key
        day_id: Foreign key to plan_days table
        item_index: 1-based position within the day
        name: Exercise name or meal name
        details: Full exercise or meal object as JSON
    """

    __tablename__ = "plan_items"

    id = Column(Integer, primary_key=True)
    day_id = Column(Integer, ForeignKey("plan_days.id"), nullable=False, index=True)
    item_index = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    details = Column(JSON, nullable=False)

    # Relationships
    day = relationship("PlanDayRecord", back_populates="items")

    def __repr__(self):
        return f"<PlanItemRecord(index={self.item_index}, name='{self.name}')>"


# ============================================================================
# Repository
# ============================================================================


def _day_records(plan: Dict[str, Any], plan_kind: PlanKind) -> List[PlanDayRecord]:
    records = []

    if plan_kind == PlanKind.WORKOUT:
        for day in plan.get("plan") or []:
            record = PlanDayRecord(
                day_index=day.get("order", len(records) + 1),
                title=day.get("day_name", ""),
                total=day.get("total_sets", 0),
                details={"muscles_focus": day.get("muscles_focus", [])},
            )
            record.items = [
                PlanItemRecord(
                    item_index=exercise.get("order", i),
                    name=exercise.get("name_he", ""),
                    details=exercise,
                )
                for i, exercise in enumerate(day.get("exercises") or [], start=1)
            ]
            records.append(record)
        return records

    for day in plan.get("days") or []:
        totals = day.get("totals") or {}
        index = day.get("day", len(records) + 1)
        record = PlanDayRecord(
            day_index=index,
            title=f"Day {index}",
            total=int(round(totals.get("calories", 0) or 0)),
            details={"totals": totals},
        )
        record.items = [
            PlanItemRecord(
                item_index=meal.get("order", i),
                name=str(meal.get("name", "")),
                details=meal,
            )
            for i, meal in enumerate(day.get("meals") or [], start=1)
        ]
        records.append(record)
    return records


class PlanRepository:
    """
    Stores accepted plans.

    `save` is idempotent per request key: saving again under the same key
    replaces the stored plan and keeps its id.
    """

    def __init__(self, session: Session):
        self.session = session

    def save(
        self,
        plan: Dict[str, Any],
        context: GenerationContext,
        request_key: Optional[str] = None,
        warnings: Optional[List[str]] = None,
    ) -> Dict[str, int]:
        """
        Persist an accepted plan.

        Args:
            plan: Validated plan document
            context: Request context the plan was generated for
            request_key: Idempotency key (a new one is generated if omitted)
            warnings: Auto-corrections to store alongside the plan

        Returns:
            {"id": plan_id}
        """
        request_key = request_key or uuid.uuid4().hex
        record = (
            self.session.query(PlanRecord)
            .filter(PlanRecord.request_key == request_key)
            .one_or_none()
        )

        if record is None:
            record = PlanRecord(request_key=request_key)
            self.session.add(record)
        else:
            logger.info("Replacing plan %d for request %s", record.id, request_key)
            record.updated_at = datetime.utcnow()

        record.user_id = context.user_id
        record.plan_kind = context.plan_kind.value
        record.goal = str(plan.get("goal", ""))
        record.diet = str(plan["diet"]) if plan.get("diet") is not None else None
        record.plan_data = plan
        record.warnings = list(warnings or [])
        record.days = _day_records(plan, context.plan_kind)

        self.session.commit()
        logger.info("Saved %s plan %d for user %s", record.plan_kind, record.id, record.user_id)
        return {"id": record.id}

    def get(self, plan_id: int) -> Optional[PlanRecord]:
        """Return the stored plan, or None if the id is unknown."""
        return self.session.get(PlanRecord, plan_id)


# Database connection and session management


@lru_cache(maxsize=None)
def get_engine(database_url: str = "sqlite:///coachplan.db"):
    """
    Create SQLAlchemy engine (one per database URL).

    In-memory SQLite shares a single connection so every session sees the
    same database.

    Args:
        database_url: Database connection string (default: SQLite file)

    Returns:
        SQLAlchemy Engine instance
    """
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        return create_engine(database_url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(database_url, echo=False)


def get_session_factory(engine):
    """
    Create session factory.

    Args:
        engine: SQLAlchemy Engine instance

    Returns:
        Session factory (sessionmaker)
    """
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


def init_database(database_url: str = "sqlite:///coachplan.db") -> Session:
    """
    Initialize database and create all tables.

    Args:
        database_url: Database connection string

    Returns:
        SQLAlchemy Session instance
    """
    engine = get_engine(database_url)
    Base.metadata.create_all(engine)
    SessionFactory = get_session_factory(engine)
    return SessionFactory()


def get_db_session(database_url: str = "sqlite:///coachplan.db"):
    """
    Yield a session on an initialized database, closing it afterwards.

    Yields:
        SQLAlchemy Session instance

    Usage:
        for db in get_db_session(settings.database_url):
            PlanRepository(db).save(...)
    """
    engine = get_engine(database_url)
    Base.metadata.create_all(engine)
    SessionFactory = get_session_factory(engine)
    db = SessionFactory()
    try:
        yield db
    finally:
        db.close()
