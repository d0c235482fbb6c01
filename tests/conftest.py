"""Test configuration and fixtures."""

from typing import Callable, Optional, Sequence

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from script_compliance.config import Settings
from script_compliance.db import audit_models, models  # noqa: F401
from script_compliance.db.base import Base
from script_compliance.db.models import ChunkModel, JobModel
from script_compliance.policy import Taxonomy

from factories import FakeGateway


@pytest.fixture
def engine():
    """Fresh in-memory database shared by every session of one test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db_session(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite:///:memory:",
        openai_api_key="test-key",
        high_recall=False,
        deterministic_mode=True,
    )


@pytest.fixture(scope="session")
def taxonomy() -> Taxonomy:
    return Taxonomy.load()


@pytest.fixture
def make_job(db_session) -> Callable[..., JobModel]:
    """Create a queued job whose chunks are the given texts, laid end to end."""

    def _make(
        texts: Sequence[str] = ("INT. HOUSE - NIGHT\nA quiet scene.",),
        normalized_text: Optional[str] = None,
        config_snapshot: Optional[dict] = None,
        script_id: str = "script-1",
        status: str = "queued",
        created_at=None,
    ) -> JobModel:
        job = JobModel(
            script_id=script_id,
            version_id="version-1",
            status=status,
            progress_total=len(texts) + 1,
            normalized_text="".join(texts) if normalized_text is None else normalized_text,
            config_snapshot=config_snapshot,
        )
        if created_at is not None:
            job.created_at = created_at
        db_session.add(job)
        db_session.flush()

        offset, line = 0, 1
        for index, text in enumerate(texts):
            db_session.add(
                ChunkModel(
                    job_id=job.id,
                    chunk_index=index,
                    text=text,
                    start_offset=offset,
                    end_offset=offset + len(text),
                    start_line=line,
                    end_line=line + text.count("\n"),
                )
            )
            offset += len(text)
            line += text.count("\n")
        db_session.commit()
        return job

    return _make


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()
