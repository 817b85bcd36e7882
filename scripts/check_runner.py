from __future__ import annotations

import asyncio

from lighthouse.core.logging import configure_logging
from lighthouse.services.runtime import build_monitoring_runtime, start_loops, stop_loops


async def _main() -> None:
    # Boot a dedicated scheduler process so checks keep running without request traffic.
    configure_logging()
    runtime = build_monitoring_runtime()
    start_loops(runtime, trial_sweeper=False)
    try:
        await asyncio.gather(*runtime.tasks)
    finally:
        await stop_loops(runtime)


if __name__ == "__main__":
    asyncio.run(_main())
