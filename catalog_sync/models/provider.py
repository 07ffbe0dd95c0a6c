"""Provider models.

A Provider is an external wholesale data feed. Its `priority` decides whose
descriptive data wins in the master catalog (lower number = higher priority).
ProviderVerticalPriority overrides the global priority inside one retail
vertical.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from catalog_sync.stores.postgres import Base


class Provider(Base):
    """Wholesale data provider."""

    __tablename__ = "providers"

    id: Mapped[int] = mapped_column(primary_key=True)

    # Stable identifier used as `source_provider` on master records
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(200))

    # NULL = unranked (resolves to the lowest priority)
    priority: Mapped[int | None] = mapped_column()
    is_active: Mapped[bool] = mapped_column(default=True)

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
        return f"<Provider {self.slug} (priority={self.priority})>"


class ProviderVerticalPriority(Base):
    """Per-retail-vertical priority override for a provider."""

    __tablename__ = "provider_vertical_priorities"
    __table_args__ = (
        UniqueConstraint("provider_id", "retail_vertical_id", name="uq_provider_vertical_priority"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    provider_id: Mapped[int] = mapped_column(ForeignKey("providers.id", ondelete="CASCADE"), index=True)
    retail_vertical_id: Mapped[int] = mapped_column(index=True)
    priority: Mapped[int] = mapped_column()

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
