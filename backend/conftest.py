from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key"

from helpdesk.database import Base  # noqa: E402
from helpdesk.apps.accounts import models as account_models  # noqa: E402
from helpdesk.apps.content import models as content_models  # noqa: E402
from helpdesk.apps.training import models as training_models  # noqa: E402


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(
        bind=engine,
        tables=[
            account_models.User.__table__,
            content_models.ContentItem.__table__,
            training_models.TrainingDefinition.__table__,
            training_models.TrainingStep.__table__,
            training_models.TrainingAssignment.__table__,
            training_models.TrainingAssignmentProgress.__table__,
            training_models.TrainingStepProgress.__table__,
            training_models.TrainingEvent.__table__,
        ],
    )
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()
