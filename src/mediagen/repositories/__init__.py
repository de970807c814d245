"""SQLAlchemy-backed repositories and the protocols the worker depends on."""

from .file_repository import SqlAlchemyFileRepository
from .generation_repository import SqlAlchemyGenerationRepository
from .settings_repository import (
    SqlAlchemySettingsRepository,
    SqlAlchemyUserProviderRepository,
)

__all__ = [
    "SqlAlchemyFileRepository",
    "SqlAlchemyGenerationRepository",
    "SqlAlchemySettingsRepository",
    "SqlAlchemyUserProviderRepository",
]
