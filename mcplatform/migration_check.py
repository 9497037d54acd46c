"""Database migration verification utilities."""
import os
import subprocess
import sys
from pathlib import Path

from mcplatform.logging_config import get_logger

logger = get_logger(__name__)


def get_alembic_dir() -> Path:
    """Directory holding alembic.ini (the project root)."""
    return Path(__file__).parent.parent


def ensure_migrations() -> None:
    """
    Apply pending migrations with ``alembic upgrade head``.

    Runs in a subprocess so the async engine in the lifespan is untouched.
    AUTO_MIGRATE=false skips the step; REQUIRE_MIGRATIONS=false keeps the
    service up when the upgrade fails.
    """
    if os.getenv("AUTO_MIGRATE", "true").lower() == "false":
        logger.info("AUTO_MIGRATE=false, skipping migrations")
        return

    logger.info("Running database migrations...")

    try:
        result = subprocess.run(
            ["alembic", "upgrade", "head"],
            cwd=get_alembic_dir(),
            capture_output=True,
            text=True,
            timeout=60,
        )
    except subprocess.TimeoutExpired:
        logger.error("Migration timed out after 60s")
        sys.exit(1)
    except FileNotFoundError:
        logger.warning("alembic not found - skipping migrations")
        return

    if result.returncode != 0:
        logger.error(f"Migration failed: {result.stderr}")
        if os.getenv("REQUIRE_MIGRATIONS", "true").lower() == "true":
            sys.exit(1)
        return

    for line in result.stderr.splitlines() + result.stdout.splitlines():
        if line.strip():
            logger.info(f"  {line}")
    logger.info("Migrations complete")
