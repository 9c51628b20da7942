"""
Database Seed Script

Onboards the registry's monitored wallets
"""

from whale_monitor.db.session import SessionLocal
from whale_monitor.core.logging_config import get_logger
from whale_monitor.services.registry import AddressRegistry, default_registry
from whale_monitor.services.wallets import seed_wallets

logger = get_logger()


def seed_monitored_wallets(session_factory=None, registry: AddressRegistry = default_registry) -> int:
    """
    Onboard every registry address

    Idempotent: existing wallets (and their cursors) are left untouched

    Returns:
        Number of wallets created
    """
    db = (session_factory or SessionLocal)()
    try:
        created = seed_wallets(db, registry)
        db.commit()
        logger.info(f"Wallet seeding completed. Onboarded {created} new wallets")
        return created

    except Exception as e:
        db.rollback()
        logger.error(f"Seed script failed: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    # Setup logging for standalone execution
    from whale_monitor.core.logging_config import setup_logging
    setup_logging(level="INFO")

    logger.info("Starting wallet seed script...")
    seed_monitored_wallets()
    logger.info("Seed script completed")
