"""Tests for module-level engine management and the transactional scope."""

import pytest
from sqlalchemy import func, select

from rental_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    is_postgres,
    reset_engine,
    session_scope,
)
from rental_kernel.models.setting import Setting
from tests.conftest import TEST_ACTOR_ID


@pytest.fixture
def module_engine(tmp_path):
    engine = init_engine_from_url(f"sqlite:///{tmp_path / 'scope.db'}")
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


def _setting(key):
    return Setting(key=key, value="1", value_type="number", category="test", created_by_id=TEST_ACTOR_ID)


def _count(key):
    with session_scope() as session:
        return session.execute(
            select(func.count()).select_from(Setting).where(Setting.key == key)
        ).scalar_one()


class TestEngineLifecycle:
    def test_uninitialized_engine_raises(self):
        reset_engine()
        with pytest.raises(RuntimeError):
            get_engine()
        with pytest.raises(RuntimeError):
            get_session()

    def test_sqlite_is_not_postgres(self, module_engine):
        assert get_engine() is module_engine
        assert not is_postgres()


class TestSessionScope:
    def test_commits_on_success(self, module_engine):
        with session_scope() as session:
            session.add(_setting("committed"))
        assert _count("committed") == 1

    def test_rolls_back_on_error(self, module_engine, captured_logs):
        with pytest.raises(ValueError):
            with session_scope() as session:
                session.add(_setting("rolled_back"))
                session.flush()
                raise ValueError("boom")

        assert _count("rolled_back") == 0
        assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())
