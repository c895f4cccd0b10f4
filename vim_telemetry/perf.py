"""
PerformanceManager queries: available metrics, counter metadata, samples.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from vim_telemetry.errors import ProtocolError, ValidationError
from vim_telemetry.invoker import SoapResponse, invoke
from vim_telemetry.models import MetricDescriptor, MetricId, ObjectRef
from vim_telemetry.soap_requests import (
    QueryAvailablePerfMetricParams,
    QueryPerfCounterParams,
    QueryPerfParams,
    make_params,
)
from vim_telemetry.transcoder import text_of

logger = logging.getLogger(__name__)


def _as_int(value: Any, what: str) -> int:
    try:
        return int(text_of(value))
    except (TypeError, ValueError):
        raise ProtocolError(f"{what} is not an integer: {value!r}")


def _returnval_list(response: SoapResponse) -> List[Any]:
    returnval = response.returnval
    if returnval is None:
        raise ProtocolError(f"{response.operation}Response is missing from the response body")
    if not isinstance(returnval, list):
        raise ProtocolError(f"{response.operation} returnval is not a list")
    return returnval


def parse_metric_ids(response: SoapResponse) -> List[MetricId]:
    """PerfMetricId entries from QueryAvailablePerfMetric, in server order."""
    metrics = []
    for entry in _returnval_list(response):
        if not isinstance(entry, dict) or "counterId" not in entry:
            raise ProtocolError("Malformed PerfMetricId in QueryAvailablePerfMetric response")
        metrics.append(MetricId(
            counter_id=_as_int(entry["counterId"], "counterId"),
            instance=text_of(entry.get("instance")),
        ))
    return metrics


def parse_counter_info(entry: Any) -> MetricDescriptor:
    """MetricDescriptor from one PerfCounterInfo entry."""
    if not isinstance(entry, dict) or "key" not in entry:
        raise ProtocolError("Malformed PerfCounterInfo in QueryPerfCounter response")

    def info(name: str) -> Dict[str, Any]:
        value = entry.get(name)
        return value if isinstance(value, dict) else {}

    group, name, unit = info("groupInfo"), info("nameInfo"), info("unitInfo")
    level = entry.get("level")
    return MetricDescriptor(
        counter_id=_as_int(entry["key"], "PerfCounterInfo key"),
        group_label=text_of(group.get("label")),
        name_label=text_of(name.get("label")),
        description=text_of(name.get("summary")),
        unit=text_of(unit.get("label")),
        rollup_type=text_of(entry.get("rollupType")),
        stats_type=text_of(entry.get("statsType")),
        level=_as_int(level, "level") if level not in (None, "") else None,
        group_key=text_of(group.get("key")),
        name_key=text_of(name.get("key")),
        unit_key=text_of(unit.get("key")),
    )


def _check_array(values, message: str) -> list:
    if isinstance(values, (str, bytes, dict)) or not isinstance(values, Iterable):
        raise ValidationError(message)
    return list(values)


def normalize_metric_definitions(metrics) -> List[MetricId]:
    """
    Accept MetricId objects or {"id": 2, "instance": ""} mappings.

    Raises:
        ValidationError: Not an array, empty, or an entry lacks id/instance
    """
    example = 'ex: [{"id": 2, "instance": ""}, {"id": 266, "instance": "FILEGROUP"}]'
    items = _check_array(metrics, f"Must supply array of metric definitions. {example}")
    if not items:
        raise ValidationError(f"Must supply array of metric definitions. {example}")

    normalized = []
    for item in items:
        if isinstance(item, MetricId):
            normalized.append(item)
            continue
        if not isinstance(item, dict):
            raise ValidationError("Malformed array of metric definitions. Each entry must have id and instance.")
        counter_id = item.get("id", item.get("counterId"))
        if counter_id is None or "instance" not in item:
            raise ValidationError("Malformed array of metric definitions. Each entry must have id and instance.")
        try:
            normalized.append(MetricId(counter_id=int(counter_id), instance=str(item["instance"])))
        except (TypeError, ValueError):
            raise ValidationError(f"Metric id must be an integer, got {counter_id!r}")
    return normalized


class PerformanceQueries:
    """PerformanceManager calls for one authenticated session."""

    def __init__(self, session):
        self.session = session

    def query_available_metrics(self, entity: ObjectRef, begin_time=None, end_time=None,
                                interval_id: Optional[int] = None) -> SoapResponse:
        if entity is None or not entity.id or not entity.kind:
            raise ValidationError("Invalid function call, must supply itemType and itemID")
        self.session.require_authenticated()

        params = make_params(
            QueryAvailablePerfMetricParams,
            perf_manager=self.session.service("perfManager"),
            entity=entity,
            begin_time=begin_time,
            end_time=end_time,
            interval_id=interval_id,
        )
        return invoke(self.session.transport, "QueryAvailablePerfMetric", params)

    def available_metrics(self, entity: ObjectRef, begin_time=None, end_time=None,
                          interval_id: Optional[int] = None) -> List[MetricId]:
        """(counterId, instance) pairs the server can report for entity."""
        response = self.query_available_metrics(entity, begin_time, end_time, interval_id)
        metrics = parse_metric_ids(response)
        logger.debug(f"{entity} exposes {len(metrics)} metrics")
        return metrics

    def query_counter_info(self, counter_ids) -> SoapResponse:
        ids = _check_array(counter_ids, "Invalid function call, must supply array of counterIds")
        if not ids:
            raise ValidationError("Invalid function call, must supply array of counterIds")
        self.session.require_authenticated()

        params = make_params(
            QueryPerfCounterParams,
            perf_manager=self.session.service("perfManager"),
            counter_ids=ids,
        )
        return invoke(self.session.transport, "QueryPerfCounter", params)

    def counter_metadata(self, counter_ids) -> Dict[int, MetricDescriptor]:
        """Descriptors keyed by counterId, in server order, from one batched call."""
        response = self.query_counter_info(counter_ids)
        catalog: Dict[int, MetricDescriptor] = {}
        for entry in _returnval_list(response):
            descriptor = parse_counter_info(entry)
            catalog[descriptor.counter_id] = descriptor
        return catalog

    def query_perf(self, entity: ObjectRef, metrics, format: str = "csv", begin_time=None, end_time=None,
                   max_sample: Optional[int] = None, interval_id: Optional[int] = None) -> SoapResponse:
        """
        Sample values for the given metrics of entity.

        Raises:
            ValidationError: Missing entity or malformed metric definitions
            SessionError: Not logged in
        """
        if entity is None or not entity.id or not entity.kind:
            raise ValidationError("Invalid function call, must supply itemType and itemID")
        metric_ids = normalize_metric_definitions(metrics)
        self.session.require_authenticated()

        params = make_params(
            QueryPerfParams,
            perf_manager=self.session.service("perfManager"),
            entity=entity,
            metric_ids=metric_ids,
            begin_time=begin_time,
            end_time=end_time,
            max_sample=max_sample,
            interval_id=interval_id,
            format=format,
        )
        return invoke(self.session.transport, "QueryPerf", params)
