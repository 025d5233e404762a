"""
Core infrastructure package for the TestOps backend.

Provides:
- Configuration management via pydantic-settings
- Async PostgreSQL connectivity via asyncpg
- The error taxonomy shared by all services

This module re-exports key components so other modules can write:

    from testops.core import get_settings, init_db, PersistenceUnavailable

FastAPI dependencies live in testops.core.dependencies and are imported from
there directly, since they depend on the services package.
"""

# =============================================================================
# Re-exports from testops.core.config
# =============================================================================
from testops.core.config import Settings, get_settings

# =============================================================================
# Re-exports from testops.core.database
# =============================================================================
from testops.core.database import init_db, close_db, get_db_pool

# =============================================================================
# Re-exports from testops.core.exceptions
# =============================================================================
from testops.core.exceptions import (
    TestOpsError,
    ValidationError,
    PersistenceUnavailable,
    TestExecutionFailure,
    TriggerEngineFailure,
    ReportNotFound,
    ScheduleNotFound,
)

# =============================================================================
# Public API Definition
# =============================================================================

__all__ = [
    'Settings',
    'get_settings',
    'init_db',
    'close_db',
    'get_db_pool',
    'TestOpsError',
    'ValidationError',
    'PersistenceUnavailable',
    'TestExecutionFailure',
    'TriggerEngineFailure',
    'ReportNotFound',
    'ScheduleNotFound',
]
