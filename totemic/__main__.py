"""
totemic.__main__ — Entry point for ``python -m totemic``
=========================================================

Maintenance commands:

``init-db``
    Create tables (dev/test safety net; production uses Alembic) and seed
    default settings.
``reconcile``
    Run the post and quota reconciliation sweeps and log the summary.

Run with::

    python -m totemic init-db
    python -m totemic reconcile
"""

from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv

from totemic.config import load_config
from totemic.database.engine import create_db_engine, init_db
from totemic.engine.cache import SettingsCache
from totemic.services.reconciliation_service import reconcile_posts, reconcile_quotas

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("totemic")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="totemic", description=__doc__.splitlines()[1])
    parser.add_argument("command", choices=["init-db", "reconcile"])
    parser.add_argument("--config", default="config.yaml", help="path to config.yaml")
    args = parser.parse_args(argv)

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    cfg = load_config(args.config)
    logger.info("Config loaded — Service: %s", cfg.service_name)

    # 3. Database.
    engine = create_db_engine()

    if args.command == "init-db":
        init_db(engine)
        return 0

    cache = SettingsCache(engine)
    cache.load_all()
    posts = reconcile_posts(engine)
    quotas = reconcile_quotas(engine, cache=cache, default_tz=cfg.default_timezone)
    logger.info(
        "Reconciliation done — posts %d/%d corrected, profiles %d/%d corrected",
        posts["corrected"], posts["checked"], quotas["corrected"], quotas["checked"],
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
