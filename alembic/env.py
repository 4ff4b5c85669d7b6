from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from buildmart.core.config import get_settings
from buildmart.core.database import Base
from buildmart.core import sequence as sequence_models  # noqa: F401
from buildmart.users import models as user_models  # noqa: F401
from buildmart.crm import models as crm_models  # noqa: F401
from buildmart.inquiries import models as inquiry_models  # noqa: F401
from buildmart.products import models as product_models  # noqa: F401
from buildmart.quotations import models as quotation_models  # noqa: F401
from buildmart.sales_orders import models as sales_order_models  # noqa: F401
from buildmart.attendance import models as attendance_models  # noqa: F401
from buildmart.documents import models as document_models  # noqa: F401
from buildmart.marketing import models as marketing_models  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    url = get_settings().database_url
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = get_settings().database_url
    connectable = engine_from_config(
        section,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
