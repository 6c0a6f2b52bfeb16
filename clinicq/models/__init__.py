"""Database models."""

from sqlalchemy import MetaData

from clinicq.models.appointments import appointments
from clinicq.models.appointments import metadata as appointments_metadata
from clinicq.models.providers import metadata as providers_metadata
from clinicq.models.providers import provider_schedules


def combined_metadata() -> MetaData:
    """Single MetaData holding every table, for create_all and migrations."""
    metadata = MetaData()
    for source in (appointments_metadata, providers_metadata):
        for table in source.tables.values():
            table.to_metadata(metadata)
    return metadata


__all__ = [
    "appointments",
    "combined_metadata",
    "provider_schedules",
]
