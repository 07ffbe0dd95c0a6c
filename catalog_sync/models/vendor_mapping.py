"""ProviderVendorMapping model.

Links a master record to one provider's SKU, cost and stock. A provider keeps
its mapping current even when another provider owns the record's descriptive
fields.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.stores.postgres import Base


class ProviderVendorMapping(Base):
    """Provider-specific SKU / price / quantity for a master record."""

    __tablename__ = "provider_vendor_mappings"
    __table_args__ = (
        UniqueConstraint("record_id", "provider_slug", name="uq_vendor_mapping_record_provider"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    record_id: Mapped[int] = mapped_column(ForeignKey("master_records.id"), index=True)
    provider_slug: Mapped[str] = mapped_column(String(100), index=True)

    vendor_sku: Mapped[str] = mapped_column(String(200), index=True)

    # Cached pricing / stock from the feed
    cost: Mapped[float | None] = mapped_column()
    map_price: Mapped[float | None] = mapped_column()
    msrp: Mapped[float | None] = mapped_column()
    quantity_available: Mapped[int | None] = mapped_column()
    last_price_update: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
