"""SyncRunState model.

One row per provider, created when the provider is registered. The `status`
column doubles as the per-provider run lock: a run may only start by flipping
it to `running` with an atomic UPDATE.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.stores.postgres import Base


class SyncStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class SyncMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncRunState(Base):
    """Persistent state of a provider's sync runs."""

    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    provider_slug: Mapped[str] = mapped_column(
        ForeignKey("providers.slug", ondelete="CASCADE"),
        unique=True,
        index=True,
    )

    mode: Mapped[str] = mapped_column(String(20), default=SyncMode.INCREMENTAL.value)
    status: Mapped[str] = mapped_column(String(20), default=SyncStatus.IDLE.value, index=True)

    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_success_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Counters of the latest run (kept after failures for diagnostics)
    records_processed: Mapped[int] = mapped_column(default=0)
    records_added: Mapped[int] = mapped_column(default=0)
    records_updated: Mapped[int] = mapped_column(default=0)
    records_skipped: Mapped[int] = mapped_column(default=0)
    records_failed: Mapped[int] = mapped_column(default=0)

    last_error: Mapped[str | None] = mapped_column(Text)
    # Feed fingerprint of the last *successful* run
    last_feed_hash: Mapped[str | None] = mapped_column(String(64))

    # JSON-serialized lists (kept as text to keep migrations simple)
    errors_json: Mapped[str | None] = mapped_column(Text)
    warnings_json: Mapped[str | None] = mapped_column(Text)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<SyncRunState {self.provider_slug} {self.status}>"
