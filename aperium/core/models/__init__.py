"""
Domain models — Pydantic types for packages and install records.

    from aperium.core.models import PackageDescriptor, InstalledRecord
"""

from aperium.core.models.package import (
    PAYLOAD_LABELS,
    PLATFORMS,
    PackageDescriptor,
    Payload,
    is_valid_name,
)
from aperium.core.models.record import InstalledRecord

__all__ = [
    # record.py
    "InstalledRecord",
    # package.py
    "PAYLOAD_LABELS",
    "PLATFORMS",
    "PackageDescriptor",
    "Payload",
    "is_valid_name",
]
