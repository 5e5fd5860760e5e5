from nextstep.db.base import Base
from nextstep.db import models  # noqa: F401  ensure models are loaded


def test_metadata_contains_core_tables() -> None:
    assert {"users", "plans", "agent_actions_log"}.issubset(Base.metadata.tables.keys())


def test_plan_table_columns() -> None:
    columns = set(Base.metadata.tables["plans"].columns.keys())

    assert {"plan", "completed_task_ids", "version", "archived", "skill_level"}.issubset(columns)
