import asyncio
import json
import logging

import aiosqlite

from botload.aggregator import Sample

logger = logging.getLogger(__name__)


class SQLiteSampleStore:
    """Raw sample export. ``emit`` only enqueues; ``flush`` does the writes."""

    def __init__(self, conn: aiosqlite.Connection, batch_size: int = 500) -> None:
        self._conn = conn
        self._batch_size = batch_size
        self._q: asyncio.Queue[Sample] = asyncio.Queue()

    def emit(self, sample: Sample) -> None:
        self._q.put_nowait(sample)

    def pending(self) -> int:
        return self._q.qsize()

    async def write_batch(self, samples: list[Sample]) -> None:
        await self._conn.executemany(
            "INSERT INTO samples(metric,value,tags,timestamp) VALUES(?,?,?,?)",
            [(s.metric, s.value, json.dumps(s.tags, sort_keys=True), s.timestamp) for s in samples],
        )
        await self._conn.commit()

    async def flush(self) -> int:
        written = 0
        while not self._q.empty():
            batch = []
            while len(batch) < self._batch_size and not self._q.empty():
                batch.append(self._q.get_nowait())
            await self.write_batch(batch)
            written += len(batch)
        return written

    async def count(self, metric: str | None = None) -> int:
        if metric is None:
            query, params = "SELECT COUNT(*) FROM samples", ()
        else:
            query, params = "SELECT COUNT(*) FROM samples WHERE metric=?", (metric,)
        async with self._conn.execute(query, params) as cursor:
            row = await cursor.fetchone()
        return row[0]


async def flush_task(store: SQLiteSampleStore, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        written = await store.flush()
        if written:
            logger.debug("Flushed %d raw samples", written)
