"""Database utilities and models."""

from nextstep.db.base import Base
from nextstep.db import models  # noqa: F401  (imported for side effects)

__all__ = ["Base"]
