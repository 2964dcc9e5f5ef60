"""
============================================================================
LIVENESS SWEEP - DATABASE MANAGER
============================================================================
Engine and session management for the device registry, plus the
repository the sweep components read from and write to.

Every registry write touches a single device row and only the fields its
owning component is responsible for, so concurrent writers never clobber
each other's data.
============================================================================
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, Iterable, Optional

from sqlalchemy import and_, case, func, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from config.constants import LivenessState
from config.settings import DatabaseSettings, DatabaseType
from database.models import (
    Base,
    Device,
    DeviceKey,
    DeviceRecord,
    Family,
    FamilyRecord,
    RegistrySnapshot,
)
from exceptions import (
    DatabaseConnectionError,
    DatabaseNotFoundError,
    DatabaseQueryError,
    SnapshotUnavailableError,
)
from utils.helpers import TimeHelper
from utils.logger import get_logger, log_execution_time


logger = get_logger("Database")


# ============================================================================
# DATABASE MANAGER CLASS
# ============================================================================

class DatabaseManager:
    """
    Owns the async engine and session factory.
    """

    def __init__(self, settings: DatabaseSettings, url: Optional[str] = None):
        """
        Initialize database manager.

        Args:
            settings: Database section of the application settings
            url: Explicit connection URL, overrides the one built from settings
        """
        self.settings = settings
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None
        self._is_initialized = False
        self._lock = asyncio.Lock()

        self.database_url = url or settings.url

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    @staticmethod
    def _mask_password(url: str) -> str:
        """
        Mask password in database URL for logging.
        """
        if "://" not in url:
            return url

        protocol, rest = url.split("://", 1)
        if "@" not in rest:
            return url

        credentials, host_part = rest.split("@", 1)
        if ":" in credentials:
            user, _ = credentials.split(":", 1)
            return f"{protocol}://{user}:****@{host_part}"

        return url

    def _engine_options(self) -> Dict[str, Any]:
        if self.is_sqlite:
            # aiosqlite connections are cheap; pooling them only holds file locks
            return {"echo": self.settings.echo, "poolclass": NullPool}

        return {
            "echo": self.settings.echo,
            "pool_size": self.settings.pool_size,
            "max_overflow": self.settings.max_overflow,
            "pool_timeout": self.settings.pool_timeout,
            "pool_recycle": self.settings.pool_recycle,
            "pool_pre_ping": True,
        }

    async def initialize(self) -> None:
        """
        Create the engine and session factory, then create missing tables.

        Raises:
            DatabaseConnectionError: the database cannot be reached
        """
        async with self._lock:
            if self._is_initialized:
                logger.warning("Database already initialized")
                return

            masked_url = self._mask_password(self.database_url)
            try:
                self.engine = create_async_engine(
                    self.database_url, **self._engine_options()
                )
                self.session_factory = async_sessionmaker(
                    self.engine,
                    class_=AsyncSession,
                    expire_on_commit=False,
                    autoflush=False,
                )

                await self.create_tables()

                self._is_initialized = True
                logger.info(f"Database initialized: {masked_url}")

            except SQLAlchemyError as e:
                logger.error(f"Failed to initialize database: {e}")
                raise DatabaseConnectionError(
                    f"Failed to initialize database: {e}",
                    url=masked_url,
                    cause=e,
                ) from e

    async def create_tables(self) -> None:
        """Create all registry tables that do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.debug("Database tables created")

    async def drop_tables(self) -> None:
        """
        Drop all registry tables.
        WARNING: This will delete all data!
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.warning("All database tables dropped")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Provide a transactional scope for database operations.

        Example:
            async with db_manager.session() as session:
                device = await session.get(Device, (family_id, device_id))
        """
        if not self._is_initialized:
            await self.initialize()

        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.debug(f"Session rolled back: {e}")
            raise
        finally:
            await session.close()

    async def check_connection(self) -> bool:
        """
        Check if database connection is alive.
        """
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, DatabaseConnectionError) as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    async def close(self) -> None:
        """
        Close database connections and cleanup resources.
        """
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self._is_initialized = False
            logger.info("Database connections closed")


# ============================================================================
# DATABASE REPOSITORY BASE CLASS
# ============================================================================

class BaseRepository:
    """
    Base repository class for database operations.
    """

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        self.logger = get_logger(self.__class__.__name__)

    async def _update_device(self, key: DeviceKey, values: Dict[str, Any], *conditions) -> int:
        """
        Apply a field update to one device row.

        Returns:
            Number of rows matched (0 or 1)

        Raises:
            DatabaseQueryError: the statement failed
        """
        statement = (
            update(Device)
            .where(Device.family_id == key.family_id, Device.id == key.device_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.db.session() as session:
                result = await session.execute(statement)
                return result.rowcount
        except SQLAlchemyError as e:
            raise DatabaseQueryError(
                f"Failed to update device {key}: {e}",
                table=Device.__tablename__,
                cause=e,
            ) from e

    async def _require_update(self, key: DeviceKey, values: Dict[str, Any]) -> None:
        if await self._update_device(key, values) == 0:
            raise DatabaseNotFoundError(
                f"Device {key} not found",
                family_id=key.family_id,
                device_id=key.device_id,
                table=Device.__tablename__,
            )


# ============================================================================
# DEVICE REPOSITORY
# ============================================================================

class DeviceRepository(BaseRepository):
    """
    Registry access for families and devices.

    Field ownership:
        dispatcher  -> last_probe_sent_at, last_probe_id, channel_invalid*
        reporter    -> last_probe_responded_at, last_heartbeat_at
        evaluator   -> liveness_state, blocked_at
    """

    @log_execution_time
    async def fetch_snapshot(self) -> RegistrySnapshot:
        """
        Read every family with its devices.

        Raises:
            SnapshotUnavailableError: the registry could not be read
        """
        try:
            async with self.db.session() as session:
                result = await session.execute(select(Family).order_by(Family.id))
                families = {family.id: family.to_record() for family in result.scalars().all()}
        except (SQLAlchemyError, DatabaseConnectionError) as e:
            raise SnapshotUnavailableError(
                f"Failed to read registry snapshot: {e}",
                cause=e,
            ) from e

        snapshot = RegistrySnapshot(families=families, taken_at=TimeHelper.get_utc_now())
        self.logger.debug(f"Snapshot: {len(families)} families, {len(snapshot)} devices")
        return snapshot

    async def get_device(self, key: DeviceKey) -> Optional[DeviceRecord]:
        try:
            async with self.db.session() as session:
                device = await session.get(Device, (key.family_id, key.device_id))
                return device.to_record() if device else None
        except SQLAlchemyError as e:
            raise DatabaseQueryError(
                f"Failed to read device {key}: {e}",
                table=Device.__tablename__,
                cause=e,
            ) from e

    async def get_family(self, family_id: str) -> Optional[FamilyRecord]:
        try:
            async with self.db.session() as session:
                family = await session.get(Family, family_id)
                return family.to_record() if family else None
        except SQLAlchemyError as e:
            raise DatabaseQueryError(
                f"Failed to read family {family_id}: {e}",
                table=Family.__tablename__,
                cause=e,
            ) from e

    # ------------------------------------------------------------------------
    # Dispatcher writes
    # ------------------------------------------------------------------------

    async def record_probe_sent(self, key: DeviceKey, sent_at: datetime, probe_id: str) -> None:
        """
        Record an acknowledged probe.

        ``first_unanswered_probe_at`` restarts at *sent_at* when the previous
        probe was answered and is kept otherwise, so re-probing a silent
        device never pushes its deadline back.
        """
        previous_answered = and_(
            Device.last_probe_responded_at.is_not(None),
            Device.last_probe_sent_at.is_not(None),
            Device.last_probe_responded_at > Device.last_probe_sent_at,
        )
        await self._require_update(
            key,
            {
                "last_probe_sent_at": sent_at,
                "last_probe_id": probe_id,
                "first_unanswered_probe_at": case(
                    (previous_answered, sent_at),
                    else_=func.coalesce(Device.first_unanswered_probe_at, sent_at),
                ),
            },
        )

    async def invalidate_channel(self, key: DeviceKey, at: datetime) -> None:
        """Flag the device's channel as permanently unusable."""
        await self._require_update(
            key, {"channel_invalid": True, "channel_invalid_at": at}
        )

    # ------------------------------------------------------------------------
    # Evaluator writes
    # ------------------------------------------------------------------------

    async def update_liveness(
        self,
        key: DeviceKey,
        state: LivenessState,
        blocked_at: Optional[datetime] = None,
    ) -> bool:
        """
        Persist a liveness transition.

        The write only applies while the stored state is not BLOCKED, so of
        two concurrent escalations exactly one reports success.

        Returns:
            True when the row was updated
        """
        values: Dict[str, Any] = {"liveness_state": state}
        if state is LivenessState.BLOCKED:
            values["blocked_at"] = blocked_at or TimeHelper.get_utc_now()

        matched = await self._update_device(
            key, values, Device.liveness_state != LivenessState.BLOCKED
        )
        return matched > 0

    # ------------------------------------------------------------------------
    # Device report writes
    # ------------------------------------------------------------------------

    async def record_probe_response(self, key: DeviceKey, responded_at: datetime) -> None:
        """Record a probe response (server receive time)."""
        await self._require_update(
            key,
            {"last_probe_responded_at": responded_at, "first_unanswered_probe_at": None},
        )

    async def record_heartbeat(self, key: DeviceKey, at: datetime) -> None:
        """Record an app heartbeat (server receive time)."""
        await self._require_update(key, {"last_heartbeat_at": at})

    # ------------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------------

    async def add_family(
        self,
        family_id: str,
        name: Optional[str] = None,
        parent_tokens: Iterable[str] = (),
        creator_token: Optional[str] = None,
        partner_tokens: Iterable[str] = (),
    ) -> FamilyRecord:
        family = Family(
            id=family_id,
            name=name,
            parent_tokens=list(parent_tokens),
            creator_token=creator_token,
            partner_tokens=list(partner_tokens),
        )
        try:
            async with self.db.session() as session:
                session.add(family)
        except SQLAlchemyError as e:
            raise DatabaseQueryError(
                f"Failed to add family {family_id}: {e}",
                table=Family.__tablename__,
                cause=e,
            ) from e

        return FamilyRecord(
            id=family_id,
            name=name,
            parent_tokens=tuple(family.parent_tokens),
            creator_token=creator_token,
            partner_tokens=tuple(family.partner_tokens),
        )

    async def add_device(
        self,
        family_id: str,
        device_id: str,
        name: Optional[str] = None,
        notification_channel: Optional[str] = None,
        **fields: Any,
    ) -> DeviceRecord:
        """
        Register a device. Extra keyword arguments set any other column,
        which is how fixtures seed probe and heartbeat history.
        """
        fields.setdefault("liveness_state", LivenessState.UNKNOWN)
        fields.setdefault("channel_invalid", False)
        device = Device(
            family_id=family_id,
            id=device_id,
            name=name,
            notification_channel=notification_channel,
            **fields,
        )
        try:
            async with self.db.session() as session:
                session.add(device)
                await session.flush()
                record = device.to_record()
        except SQLAlchemyError as e:
            raise DatabaseQueryError(
                f"Failed to add device {family_id}/{device_id}: {e}",
                table=Device.__tablename__,
                cause=e,
            ) from e

        return record


# ============================================================================
# END OF DATABASE MANAGER MODULE
# ============================================================================
