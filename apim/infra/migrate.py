from __future__ import annotations

import os

import structlog
from alembic import command
from alembic.config import Config

ALEMBIC_CONFIG = os.getenv("ALEMBIC_CONFIG", "alembic.ini")

logger = structlog.get_logger(__name__)


def run_upgrade_head(config_path: str = ALEMBIC_CONFIG) -> None:
    logger.info("migrations.upgrade", config=config_path, revision="head")
    command.upgrade(Config(config_path), "head")


if __name__ == "__main__":
    run_upgrade_head()
