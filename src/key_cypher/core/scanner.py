"""Scan orchestration: run every detector and merge results into the catalog."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from pathlib import Path

from key_cypher.core.base import BaseDetector, CatalogEntry, ScanEvent, ScanReport
from key_cypher.core.catalog import Catalog
from key_cypher.core.errors import PartialScanFailure
from key_cypher.core.registry import get_all_detectors

logger = logging.getLogger(__name__)


class ScanOrchestrator:
    """Runs the detectors against one root and feeds the catalog.

    Both modes are idempotent: the catalog only ever grows by paths it
    does not already hold, so rescanning an unchanged tree adds nothing.
    """

    def __init__(
        self,
        catalog: Catalog,
        root: Path,
        detectors: Sequence[BaseDetector] | None = None,
    ) -> None:
        self.catalog = catalog
        self.root = root
        self.detectors = list(detectors) if detectors is not None else get_all_detectors()

    async def _merge(self, entries: list[CatalogEntry]) -> list[CatalogEntry]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.catalog.merge, entries)

    async def scan_once(self) -> ScanReport:
        """Run all detectors concurrently, then merge and persist once.

        A detector that raises contributes nothing; its failure is recorded
        in the report instead of failing the batch.
        """
        results = await asyncio.gather(
            *(detector.scan(self.root) for detector in self.detectors),
            return_exceptions=True,
        )

        collected: list[CatalogEntry] = []
        failed: dict[str, str] = {}
        for detector, result in zip(self.detectors, results, strict=True):
            if isinstance(result, BaseException):
                failure = PartialScanFailure(detector.name, result)
                logger.warning("%s", failure)
                failed[detector.name] = str(result)
                continue
            logger.debug("%s found %d candidate(s)", detector.name, len(result))
            collected.extend(result)

        added = await self._merge(collected)
        logger.info("Scan added %d new entr%s", len(added), "y" if len(added) == 1 else "ies")
        return ScanReport(
            new_entries=added,
            failed_detectors=failed,
            catalog_size=len(self.catalog),
        )

    async def scan_stream(self) -> AsyncIterator[ScanEvent]:
        """Yield one ``batch`` event per detector, then a ``complete`` event.

        Detectors run concurrently but their results are merged and reported
        in registry order, each as soon as it (and every detector before it)
        has finished. Closing the generator early cancels pending detectors.
        """
        tasks = [asyncio.ensure_future(detector.scan(self.root)) for detector in self.detectors]
        total = 0
        failed: dict[str, str] = {}
        try:
            for detector, task in zip(self.detectors, tasks, strict=True):
                try:
                    entries = await task
                except Exception as e:
                    logger.warning("%s", PartialScanFailure(detector.name, e))
                    failed[detector.name] = str(e)
                    yield ScanEvent(kind="batch", detector=detector.name, error=str(e))
                    continue
                try:
                    added = await self._merge(entries)
                except OSError as e:
                    logger.error("Could not persist catalog: %s", e)
                    yield ScanEvent(
                        kind="complete", error=str(e), total_new=total, failed_detectors=failed
                    )
                    return
                total += len(added)
                yield ScanEvent(kind="batch", detector=detector.name, new_entries=added)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        yield ScanEvent(kind="complete", total_new=total, failed_detectors=failed)
