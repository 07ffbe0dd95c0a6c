"""MasterRecord model.

One row per distinct physical item per retail vertical. The descriptive fields
belong to exactly one provider at a time (`source_provider`); which provider
wins is decided by the replacement policy during a sync run.

No pricing is stored here - see ProviderVendorMapping.
"""

from datetime import datetime

from sqlalchemy import DateTime, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.stores.postgres import Base


class MasterRecord(Base):
    """Consolidated catalog entry."""

    __tablename__ = "master_records"
    __table_args__ = (
        UniqueConstraint("retail_vertical_id", "natural_key", name="uq_master_records_vertical_natural_key"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # Identity
    retail_vertical_id: Mapped[int] = mapped_column(index=True)
    natural_key: Mapped[str] = mapped_column(String(64), index=True)  # e.g. UPC

    # Descriptive fields (owned by source_provider)
    name: Mapped[str] = mapped_column(Text)
    brand: Mapped[str | None] = mapped_column(String(200))
    model: Mapped[str | None] = mapped_column(String(200))
    manufacturer_part_number: Mapped[str | None] = mapped_column(String(200))
    category: Mapped[str | None] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text)
    image_url: Mapped[str | None] = mapped_column(Text)
    # Canonical JSON (sorted keys) so equal specs compare equal as text
    specifications_json: Mapped[str | None] = mapped_column(Text)

    # Provenance
    source_provider: Mapped[str | None] = mapped_column(String(100), index=True)
    source_locked: Mapped[bool] = mapped_column(default=False)

    # Optimistic concurrency for batched updates
    version: Mapped[int] = mapped_column(default=1)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<MasterRecord {self.retail_vertical_id}:{self.natural_key} ({self.source_provider})>"
