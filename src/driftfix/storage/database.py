"""
SQL storage for rule set histories.

Each model's history is stored as one JSON row in ``patch_rulesets``.
"""

from datetime import datetime, timezone
from typing import List, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy import Column, DateTime, Integer, JSON, String, create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from ..config.settings import StorageSettings, get_settings
from ..models.ruleset import RuleSetHistory
from ..utils.exceptions import PersistenceError
from .repository import RuleSetRepository
from .schemas import SCHEMA_VERSION, AppliedPatchSummary, RuleSetRecord, summarize_log

logger = structlog.get_logger(__name__)

Base = declarative_base()


class PatchRuleSetRow(Base):
    """SQLAlchemy model for a model's rule set history."""
    __tablename__ = "patch_rulesets"

    model_id = Column(String(255), primary_key=True)
    schema_version = Column(Integer, nullable=False, default=SCHEMA_VERSION)
    active_version = Column(Integer, nullable=False, default=0)
    state = Column(String(20), nullable=False)
    payload = Column(JSON, nullable=False)
    saved_at = Column(DateTime, nullable=False)


class SqlRuleSetRepository(RuleSetRepository):
    """
    Repository backed by any SQLAlchemy database.
    """

    def __init__(self, settings: Optional[StorageSettings] = None, engine=None):
        """
        Initialize SQL repository.

        Args:
            settings: Storage settings
            engine: Existing SQLAlchemy engine (overrides settings.database_url)
        """
        self.settings = settings or get_settings().storage
        self.engine = engine or create_engine(self.settings.database_url)
        self.SessionLocal = sessionmaker(bind=self.engine)

        # Create tables if they don't exist
        Base.metadata.create_all(self.engine)

        logger.info("sql_ruleset_repository_initialized", url=self.engine.url.render_as_string(hide_password=True))

    def save(self, model_id: str, history: RuleSetHistory) -> None:
        record = RuleSetRecord(
            model_id=model_id,
            active_version=history.active.version,
            state=history.state.value,
            payload=history.to_dict(),
            saved_at=datetime.now(timezone.utc),
        )
        try:
            with self.SessionLocal() as session, session.begin():
                row = session.get(PatchRuleSetRow, model_id)
                if row is None:
                    row = PatchRuleSetRow(model_id=model_id)
                    session.add(row)
                row.schema_version = record.schema_version
                row.active_version = record.active_version
                row.state = record.state
                row.payload = record.payload
                row.saved_at = record.saved_at
        except SQLAlchemyError as e:
            logger.error("failed_to_save_ruleset", model_id=model_id, error=str(e))
            raise PersistenceError(f"Failed to save rule set for {model_id}", details={"error": str(e)}) from e

        logger.debug("ruleset_saved", model_id=model_id, version=record.active_version)

    def load(self, model_id: str) -> Optional[RuleSetHistory]:
        try:
            with self.SessionLocal() as session:
                row = session.get(PatchRuleSetRow, model_id)
                if row is None:
                    return None
                data = {
                    "model_id": row.model_id,
                    "schema_version": row.schema_version,
                    "active_version": row.active_version,
                    "state": row.state,
                    "payload": row.payload,
                    "saved_at": row.saved_at,
                }
        except SQLAlchemyError as e:
            logger.error("failed_to_load_ruleset", model_id=model_id, error=str(e))
            raise PersistenceError(f"Failed to load rule set for {model_id}", details={"error": str(e)}) from e

        try:
            record = RuleSetRecord.model_validate(data)
            return RuleSetHistory.from_dict(record.payload)
        except (ValidationError, KeyError, ValueError) as e:
            raise PersistenceError(
                f"Stored rule set for {model_id} is invalid",
                details={"error": str(e)}
            ) from e

    def delete(self, model_id: str) -> bool:
        try:
            with self.SessionLocal() as session, session.begin():
                row = session.get(PatchRuleSetRow, model_id)
                if row is None:
                    return False
                session.delete(row)
                return True
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete rule set for {model_id}", details={"error": str(e)}) from e

    def model_ids(self) -> List[str]:
        with self.SessionLocal() as session:
            return sorted(session.scalars(select(PatchRuleSetRow.model_id)).all())

    def patch_log(self, model_id: str) -> List[AppliedPatchSummary]:
        """Applied patch summaries for a model, oldest first."""
        with self.SessionLocal() as session:
            row = session.get(PatchRuleSetRow, model_id)
            if row is None:
                return []
            return summarize_log(row.payload)
