"""
TestOps Backend Package.

Backend for a test automation platform: tracks batch test reports through
their lifecycle, runs test suites on cron schedules and aggregates execution
history into analytics.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, database, dependencies and errors
    - models: Pydantic schemas and enums
    - services: Report lifecycle, orchestration, analytics and storage
    - jobs: Slack run notifications
    - sql: Parameterized SQL queries
"""

__version__ = "1.0.0"
