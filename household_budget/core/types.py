from decimal import Decimal
from sqlalchemy import JSON, String, TypeDecorator
from sqlalchemy.dialects import postgresql
import uuid


class GUID(TypeDecorator):
    """
    Platform-independent GUID type.

    Native UUID on PostgreSQL, String(36) everywhere else.
    """
    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(postgresql.UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, uuid.UUID):
            value = uuid.UUID(str(value))
        return value if dialect.name == 'postgresql' else str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(value)


class CategoryMap(TypeDecorator):
    """
    Name-keyed map of category budget configs stored as JSON
    (JSONB on PostgreSQL).

    Python side: ``Dict[str, CategoryConfig]``. Decimals travel as strings so
    limits round-trip without float drift.
    """
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(postgresql.JSONB())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        from household_budget.schemas.budget import CategoryConfig

        stored = {}
        for name, config in value.items():
            if not isinstance(config, CategoryConfig):
                config = CategoryConfig.model_validate(config)
            stored[name] = config.model_dump(mode="json", exclude_none=True)
        return stored

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        from household_budget.schemas.budget import CategoryConfig

        return {name: CategoryConfig.model_validate(raw) for name, raw in value.items()}

    def compare_values(self, x, y):
        return x == y


def to_decimal(value) -> Decimal:
    """Coerce floats/ints/strings into a 2-place Decimal."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(Decimal("0.01"))
