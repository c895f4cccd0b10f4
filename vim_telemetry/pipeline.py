"""
Metric Catalog Pipeline
=======================

Builds the metric catalog of every object of one inventory kind:

1. Inventory traversal for the object type (name only)
2. Available-metric discovery per object, in inventory order
3. Distinct counterIds, first-seen order
4. One batched QueryPerfCounter call for those counterIds
5. Join: each (counterId, instance) becomes the shared descriptor + instance

The first failing step aborts the run; no partial result is returned.
Step 2 can fan out over a thread pool. Pacing still applies globally because
every worker goes through the same PacedTransport.
"""

import concurrent.futures
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from vim_telemetry.errors import ProtocolError
from vim_telemetry.models import (
    EnrichedMetric,
    EnrichedObject,
    MetricDescriptor,
    MetricId,
    ObjectRef,
    PipelineResult,
    PropertySet,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineKind:
    """Inventory object type plus the entity type used for metric discovery"""
    object_type: str
    metric_entity_type: Optional[str] = None


VIRTUAL_MACHINES = PipelineKind("VirtualMachine")
COMPUTE_RESOURCES = PipelineKind("ComputeResource")
HOSTS = PipelineKind("HostSystem")

PIPELINE_KINDS: Dict[str, PipelineKind] = {
    "vm": VIRTUAL_MACHINES,
    "cluster": COMPUTE_RESOURCES,
    "host": HOSTS,
}


def dedupe_counter_ids(discovered: Iterable[List[MetricId]]) -> List[int]:
    """Union of counterIds over all discovery results, first-seen order."""
    seen = set()
    distinct: List[int] = []
    for metrics in discovered:
        for metric in metrics:
            if metric.counter_id not in seen:
                seen.add(metric.counter_id)
                distinct.append(metric.counter_id)
    return distinct


def join_metrics(objects: List[PropertySet], discovered: List[List[MetricId]],
                 catalog: Dict[int, MetricDescriptor]) -> List[EnrichedObject]:
    """Replace each discovered MetricId with its catalog descriptor plus instance."""
    enriched = []
    for item, metrics in zip(objects, discovered):
        enriched.append(EnrichedObject(
            obj=item.obj,
            name=item.text("name"),
            metrics=[EnrichedMetric(descriptor=catalog[metric.counter_id], instance=metric.instance)
                     for metric in metrics],
        ))
    return enriched


class MetricPipeline:
    """Discovery -> dedup -> metadata -> join for one session."""

    def __init__(self, inventory, perf, max_workers: int = 1):
        """
        Args:
            inventory: InventoryTraversal
            perf: PerformanceQueries
            max_workers: Parallel metric discovery calls (1 = sequential)
        """
        self.inventory = inventory
        self.perf = perf
        self.max_workers = max(1, int(max_workers))

    def run(self, kind: PipelineKind) -> PipelineResult:
        objects = self.inventory.retrieve(kind.object_type, ["name"], False)
        logger.info(f"Discovering metrics for {len(objects)} {kind.object_type} objects")

        discovered = self.discover(objects, kind)

        distinct = dedupe_counter_ids(discovered)
        catalog: Dict[int, MetricDescriptor] = {}
        if distinct:
            metadata = self.perf.counter_metadata(distinct)
            missing = [counter_id for counter_id in distinct if counter_id not in metadata]
            if missing:
                raise ProtocolError(f"QueryPerfCounter returned no metadata for counters: {missing}")
            catalog = {counter_id: metadata[counter_id] for counter_id in distinct}

        logger.info(f"Metric catalog for {kind.object_type}: {len(catalog)} distinct counters")
        return PipelineResult(objects=join_metrics(objects, discovered, catalog), catalog=catalog)

    def _entity(self, item: PropertySet, kind: PipelineKind) -> ObjectRef:
        if kind.metric_entity_type:
            return ObjectRef(kind=kind.metric_entity_type, id=item.obj.id)
        return item.obj

    def discover(self, objects: List[PropertySet], kind: PipelineKind) -> List[List[MetricId]]:
        """Available metrics per object, aligned with objects."""
        entities = [self._entity(item, kind) for item in objects]
        if self.max_workers == 1 or len(entities) <= 1:
            return [self.perf.available_metrics(entity) for entity in entities]
        return self._discover_parallel(entities)

    def _discover_parallel(self, entities: List[ObjectRef]) -> List[List[MetricId]]:
        results: List[Optional[List[MetricId]]] = [None] * len(entities)
        executor = concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            futures = {
                executor.submit(self.perf.available_metrics, entity): index
                for index, entity in enumerate(entities)
            }
            done, _pending = concurrent.futures.wait(futures, return_when=concurrent.futures.FIRST_EXCEPTION)

            failed = sorted(
                (futures[future] for future in done if future.exception() is not None)
            )
            if failed:
                first = failed[0]
                logger.warning(f"Metric discovery failed for {entities[first]}; cancelling remaining work")
                executor.shutdown(wait=True, cancel_futures=True)
                error = next(future.exception() for future, index in futures.items() if index == first)
                raise error

            for future, index in futures.items():
                results[index] = future.result()
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

        return [metrics or [] for metrics in results]
