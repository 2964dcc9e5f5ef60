"""
Database Package for Liveness Sweep

Provides the device registry: SQLAlchemy models, immutable snapshot
records and the repository used by the sweep components.
"""

from database.manager import (
    DatabaseManager,
    BaseRepository,
    DeviceRepository,
)

from database.models import (
    Base,
    Family,
    Device,
    DeviceKey,
    DeviceRecord,
    FamilyRecord,
    RegistrySnapshot,
)

__all__ = [
    # Manager
    "DatabaseManager",

    # Models
    "Base",
    "Family",
    "Device",

    # Records
    "DeviceKey",
    "DeviceRecord",
    "FamilyRecord",
    "RegistrySnapshot",

    # Repositories
    "BaseRepository",
    "DeviceRepository",
]
