"""ORM models exposed for metadata discovery."""
from nextstep.db.models.agent_action_log import AgentActionLog
from nextstep.db.models.plan import PlanRecord
from nextstep.db.models.user import User

__all__ = [
    "AgentActionLog",
    "PlanRecord",
    "User",
]
