import asyncio
import os
import random

from asyncemit.core import log
from asyncemit.core.emitter import AsyncEmitter
from asyncemit.core.metrics import force_emit, start_exporter, stop_exporter


async def main():
    log.setup()
    start_exporter(interval_sec=float(os.getenv("METRICS_INTERVAL", "5")),
                   json_mode=(os.getenv("LOG_JSON", "0") == "1"))
    l = log.get("demo")

    emitter = AsyncEmitter(name="demo")

    def on_tick(i):
        l.info("sync listener tick=%d", i)

    async def on_tick_slow(i):
        await asyncio.sleep(random.uniform(0.01, 0.05))
        if i % 3 == 0:
            raise RuntimeError(f"tick {i} failed")

    emitter.subscribe("tick", on_tick)
    emitter.subscribe("tick", on_tick_slow)
    emitter.subscribe_error(lambda rec: l.warning("error channel: %s", rec.to_dict()))

    try:
        for i in range(10):
            await emitter.dispatch("tick", i)
    finally:
        force_emit()
        stop_exporter()


if __name__ == "__main__":
    asyncio.run(main())
