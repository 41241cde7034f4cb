from app.models.base import Base  # noqa: F401

from app.models.batch import BatchRecord  # noqa: F401
