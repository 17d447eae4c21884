"""
Scheduler Service
Periodically re-verifies stored channel tokens so revoked ones stop routing
"""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from config.settings import settings
from db.db import SessionLocal
from services.channelServices.meta_graph_client import MetaGraphClient
from services.channelServices.token_verifier import TokenVerifier
from utils.logger import logger


class ChannelVerificationScheduler:
    """Service for scheduling periodic token verification"""

    def __init__(
        self,
        verifier: Optional[TokenVerifier] = None,
        session_factory: Optional[async_sessionmaker] = None,
        max_age: Optional[timedelta] = None,
    ):
        self.verifier = verifier or TokenVerifier(MetaGraphClient(settings.get_provider_config()))
        self.session_factory = session_factory or SessionLocal
        self.max_age = max_age or timedelta(hours=settings.VERIFY_MAX_AGE_HOURS)
        self.is_running = False

    async def verify_all_accounts(self) -> dict:
        """
        Verify every active account that is due

        Returns:
            Dictionary with verification results
        """
        logger.info("🔄 Starting channel token verification...")

        async with self.session_factory() as db:
            results = await self.verifier.verify_due(db, self.max_age)

        revoked = [r.account_id for r in results if r.reason == "invalid_token"]
        summary = {
            "checked": len(results),
            "valid": sum(1 for r in results if r.valid),
            "revoked": revoked,
            "unavailable": sum(1 for r in results if r.reason == "provider_unavailable"),
            "timestamp": datetime.utcnow().isoformat(),
        }
        logger.info(
            f"📊 Verification completed: {summary['checked']} checked, {len(revoked)} revoked, "
            f"{summary['unavailable']} deferred"
        )
        return summary

    async def scheduler_loop(self, interval_minutes: int = 360):
        """
        Main scheduler loop

        Args:
            interval_minutes: Interval between verification cycles
        """
        logger.info(f"🚀 Starting channel verification scheduler with {interval_minutes} minute intervals")
        self.is_running = True

        while self.is_running:
            try:
                await self.verify_all_accounts()
                logger.info(f"⏰ Next verification in {interval_minutes} minutes")
                await asyncio.sleep(interval_minutes * 60)
            except asyncio.CancelledError:
                logger.info("🛑 Scheduler cancelled")
                break
            except Exception as e:
                logger.error(f"❌ Scheduler error: {type(e).__name__}: {e}")
                # Back off before the next cycle
                await asyncio.sleep(60)

        self.is_running = False
        logger.info("📴 Channel verification scheduler stopped")

    def stop(self):
        self.is_running = False

    async def run_once(self):
        """Run verification once (for cron or manual triggers)"""
        return await self.verify_all_accounts()


async def main():
    """Main entry point for running the scheduler standalone"""
    import argparse

    parser = argparse.ArgumentParser(description='Channel Token Verification Scheduler')
    parser.add_argument('--interval', type=int, default=settings.VERIFY_INTERVAL_MINUTES,
                        help='Verification interval in minutes')
    parser.add_argument('--once', action='store_true', help='Run once and exit')

    args = parser.parse_args()
    scheduler = ChannelVerificationScheduler()

    if args.once:
        logger.info("Running channel verification once...")
        result = await scheduler.run_once()
        logger.info(f"Result: {result}")
    else:
        await scheduler.scheduler_loop(args.interval)


if __name__ == "__main__":
    asyncio.run(main())
