"""
Role Expiry Job: periodic compaction of expired role grants.

Permission checks already ignore expired grants, so this job only keeps
the tables small. It deletes expired role assignments and marks expired
organization role sets.

Typical cron schedule: 0 3 * * * (daily at 3 AM)
"""

import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from ..core.config import Settings, get_settings
from ..core.container import build_container

logger = logging.getLogger(__name__)


async def run_role_expiry_job(settings: Settings, container=None) -> dict[str, Any]:
    """
    Main entry point for the role expiry job.

    Args:
        settings: Application settings
        container: Prebuilt service container; built from settings when omitted

    Returns:
        Job result summary
    """
    start_time = datetime.now(timezone.utc)
    logger.info(f"Starting role expiry job at {start_time.isoformat()}")

    results: dict[str, Any] = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "assignments_deleted": 0,
        "organization_roles_expired": 0,
        "skipped": False,
    }

    if not settings.role_expiry_cleanup_enabled:
        logger.info("Role expiry cleanup is disabled; nothing to do")
        results["skipped"] = True
        results["completed_at"] = start_time.isoformat()
        return results

    container = container or build_container(settings)
    await container.start()
    try:
        results.update(await container.users.cleanup_expired_roles())
    except Exception as e:
        logger.error(f"Role expiry job failed: {e}")
        raise
    finally:
        await container.stop()

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"Role expiry job completed in {results['duration_seconds']:.2f}s: "
        f"{results['assignments_deleted']} assignments deleted, "
        f"{results['organization_roles_expired']} organization role sets expired"
    )
    return results


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the role expiry job."""
    import argparse

    parser = argparse.ArgumentParser(description="Remove expired role grants")
    parser.add_argument(
        "--database-url",
        default=None,
        help="Database connection string (defaults to DATABASE_URL)",
    )
    args = parser.parse_args()

    settings = get_settings()
    if args.database_url:
        settings = settings.model_copy(update={"database_url": args.database_url})

    # Configure logging
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        results = asyncio.run(run_role_expiry_job(settings))
        print(f"Job completed: {results}")
    except Exception as e:
        print(f"Job failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
