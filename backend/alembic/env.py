"""Alembic environment for the UniClinic schema."""
from logging.config import fileConfig
import os
import sys

from alembic import context

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from uniclinic.core.config import settings  # noqa: E402
from uniclinic.models.base import Base, engine  # noqa: E402
from uniclinic.models import (  # noqa: F401, E402
    appointment,
    audit_log,
    medical_card,
    medical_record,
    prescription,
    user,
)

if context.config.config_file_name is not None:
    fileConfig(context.config.config_file_name)

# SQLite cannot ALTER most column properties in place
BATCH_MODE = settings.DATABASE_URL.startswith("sqlite")


def _configure(**kwargs) -> None:
    context.configure(target_metadata=Base.metadata, render_as_batch=BATCH_MODE, **kwargs)
    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    _configure(
        url=settings.DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
else:
    with engine.connect() as connection:
        _configure(connection=connection)
