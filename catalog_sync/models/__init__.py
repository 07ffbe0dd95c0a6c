"""SQLAlchemy ORM models.

Models represent database tables:
- providers / provider_vertical_priorities: provider priority configuration
- master_records: consolidated catalog, one row per (vertical, natural key)
- provider_vendor_mappings: provider SKU / cost / stock per master record
- sync_runs: per-provider run state and last run counters
"""

from catalog_sync.models.master_record import MasterRecord
from catalog_sync.models.provider import Provider, ProviderVerticalPriority
from catalog_sync.models.sync_run import SyncMode, SyncRunState, SyncStatus
from catalog_sync.models.vendor_mapping import ProviderVendorMapping

__all__ = [
    "MasterRecord",
    "Provider",
    "ProviderVendorMapping",
    "ProviderVerticalPriority",
    "SyncMode",
    "SyncRunState",
    "SyncStatus",
]
