"""
SQLAlchemy models and database configuration for user tokens.

This module provides a common entry point for all models.
"""

from .db_base import (
    JSON,
    EncryptedBinary,
    TimestampMixin,
    UTCDateTime,
    UUIDMixin,
    utc_now,
)
from .db_config import (
    Base,
    DatabaseConfig,
    DatabaseManager,
    close_db,
    get_db_manager,
    get_development_config,
    get_production_config,
    import_all_models,
    init_db,
    initialize_db,
    set_db_manager,
)
from .db_user_token_models import (
    UserToken,
    UserTokenAccessLog,
    UserTokenDailyUsage,
    UserTokenIP,
)

__all__ = [
    # Base definitions
    "Base",
    "JSON",
    "EncryptedBinary",
    "TimestampMixin",
    "UTCDateTime",
    "UUIDMixin",
    "utc_now",
    # Configuration
    "DatabaseConfig",
    "DatabaseManager",
    "close_db",
    "get_db_manager",
    "get_development_config",
    "get_production_config",
    "import_all_models",
    "init_db",
    "initialize_db",
    "set_db_manager",
    # Models
    "UserToken",
    "UserTokenIP",
    "UserTokenDailyUsage",
    "UserTokenAccessLog",
]
