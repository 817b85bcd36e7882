from __future__ import annotations

import argparse
import asyncio

from lighthouse.core.logging import configure_logging
from lighthouse.services.trial_expiry import expire_trials, run_trial_expiry_loop


async def _main(once: bool) -> None:
    # Run the hourly trial sweeper, or a single sweep for cron-style scheduling.
    configure_logging()
    if once:
        summary = await expire_trials()
        print(
            f"scanned={summary.scanned} downgraded={summary.downgraded} "
            f"converted={summary.converted} errors={summary.errors}"
        )
        return
    await run_trial_expiry_loop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Downgrade organizations whose trial has ended")
    parser.add_argument("--once", action="store_true")
    args = parser.parse_args()
    asyncio.run(_main(args.once))


if __name__ == "__main__":
    main()
