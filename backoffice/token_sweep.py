"""
CLI entrypoint for the expired token sweep. Run from cron, e.g.:

  python -m backoffice.token_sweep

Or hourly: 0 * * * * cd /path/to/backoffice && .venv/bin/python -m backoffice.token_sweep
"""

import logging
import sys

from backoffice.core.config import get_settings
from backoffice.core.database import SessionLocal
from backoffice.services.token_sweep import sweep_expired_tokens

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main() -> int:
    """Delete refresh and recovery tokens whose expiry has passed."""
    settings = get_settings()
    db = SessionLocal()
    try:
        refresh_deleted, recovery_deleted = sweep_expired_tokens(db, settings)
        logger.info(
            "Token sweep completed: refresh_deleted=%s recovery_deleted=%s",
            refresh_deleted,
            recovery_deleted,
        )
        return 0
    except Exception as e:
        logger.exception("Token sweep failed: %s", e)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
