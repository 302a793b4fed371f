"""
Database Package for the Police Personnel Records Service

This package provides:
- SQLAlchemy ORM models for officers and their records
- Async session provider and Unit of Work for transaction management
- Repository pattern for data access
- The records service implementing the validated, transactional write path
- Query timing
"""

from database.models import (
    Base,
    Officer,
    TrainingRecord,
    CompetencyRecord,
    Evaluation,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    AsyncUnitOfWork,
    create_test_provider,
)
from database.monitoring import (
    async_timed_query,
    get_db_metrics,
    reset_metrics,
    configure_monitoring,
)
from database.records_service import RecordService

__all__ = [
    # Base
    'Base',
    # Models
    'Officer',
    'TrainingRecord',
    'CompetencyRecord',
    'Evaluation',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'AsyncUnitOfWork',
    'create_test_provider',
    # Monitoring
    'async_timed_query',
    'get_db_metrics',
    'reset_metrics',
    'configure_monitoring',
    # Service
    'RecordService',
]
