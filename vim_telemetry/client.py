"""
vSphere Telemetry Client
========================

VimClient is the public facade over the session, inventory, performance and
pipeline layers. Every operation returns an ApiResult instead of raising:

- raw / headers: the last SOAP response of the operation (single-call ops)
- json_text: JSON rendering of the decoded value
- value: decoded value (transcoded response, or a derived dict)
- data: typed domain object (PropertySets, MetricIds, PipelineResult, ...)
- error / error_type: "" / None on success

Which of raw, headers, json_text and value/data are populated is chosen per
call with ResultOptions.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

from dateutil import parser as date_parser
from requests.structures import CaseInsensitiveDict

from vim_telemetry.config import ClientSettings, ResultOptions, resolve_options
from vim_telemetry.errors import ProtocolError, ValidationError, VimApiError, format_error
from vim_telemetry.invoker import SoapResponse, invoke
from vim_telemetry.models import ObjectRef
from vim_telemetry.perf import PerformanceQueries, parse_metric_ids, parse_counter_info
from vim_telemetry.pipeline import COMPUTE_RESOURCES, HOSTS, VIRTUAL_MACHINES, MetricPipeline, PipelineKind
from vim_telemetry.session import SessionManager
from vim_telemetry.soap_requests import CurrentTimeParams
from vim_telemetry.transcoder import text_of, to_json
from vim_telemetry.transport import PacedTransport, SoapHttpSender
from vim_telemetry.traversal import InventoryTraversal, parse_object_contents

logger = logging.getLogger(__name__)


@dataclass
class ApiResult:
    """Outcome of one VimClient operation"""
    raw: Optional[bytes] = None
    headers: Optional[CaseInsensitiveDict] = None
    json_text: Optional[str] = None
    value: Any = None
    data: Any = None
    error: str = ""
    error_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.error


@dataclass
class _Outcome:
    value: Any
    data: Any = None
    response: Optional[SoapResponse] = None


def _optional_int(value: Optional[int]) -> Optional[int]:
    """-1 and None both mean "let the server choose"."""
    if value is None or value == -1:
        return None
    return value


def _entity(object_type: str, object_id: str) -> ObjectRef:
    if not object_type or not object_id:
        raise ValidationError("Invalid function call, must supply itemType and itemID")
    return ObjectRef(kind=object_type, id=object_id)


class VimClient:
    """
    vSphere SOAP client for inventory and performance telemetry.

    Usage:
        client = VimClient(ClientSettings(url="https://vc/sdk", username=..., password=...))
        client.login()
        result = client.get_virtual_machine_metric_defs()
        if result.error:
            ...
    """

    def __init__(self, settings: Optional[ClientSettings] = None, sender=None):
        """
        Args:
            settings: Endpoint, credentials, pacing and timeouts
            sender: Optional object with send(payload, headers); defaults to
                SoapHttpSender for settings.url
        """
        self.settings = settings or ClientSettings()
        self.sender = sender or SoapHttpSender(
            self.settings.url,
            verify_ssl=self.settings.strict_ssl,
            timeout=self.settings.timeout,
        )
        self.transport = PacedTransport(self.sender, min_interval_ms=self.settings.api_wait_ms)
        self.session = SessionManager(self.transport)
        self.inventory = InventoryTraversal(self.session)
        self.perf = PerformanceQueries(self.session)
        self.pipeline = MetricPipeline(self.inventory, self.perf, max_workers=self.settings.max_workers)

    def close(self):
        close = getattr(self.sender, "close", None)
        if close:
            close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # Result assembly

    def _execute(self, operation: str, options: Optional[ResultOptions],
                 call: Callable[[], _Outcome]) -> ApiResult:
        options = resolve_options(options)
        try:
            self.settings.require_endpoint()
            outcome = call()
        except VimApiError as e:
            logger.warning(f"{operation} failed: {format_error(e)}")
            return ApiResult(error=format_error(e), error_type=type(e).__name__)

        result = ApiResult()
        if outcome.response is not None:
            if options.send_raw:
                result.raw = outcome.response.raw
            if options.send_headers:
                result.headers = outcome.response.headers
        if options.send_json:
            result.json_text = to_json(outcome.value)
        if options.send_value:
            result.value = outcome.value
            result.data = outcome.data
        return result

    @staticmethod
    def _response(response: SoapResponse, data: Any = None) -> _Outcome:
        return _Outcome(value=response.value, data=data, response=response)

    # Session

    def discover_service(self, options: Optional[ResultOptions] = None) -> ApiResult:
        """Fetch the ServiceContent; data is the endpoint name -> ObjectRef map."""
        def call():
            response = self.session.discover_service()
            return self._response(response, dict(self.session.services))
        return self._execute("discover_service", options, call)

    def login(self, options: Optional[ResultOptions] = None) -> ApiResult:
        """Log in with the configured credentials, discovering the service first if needed."""
        def call():
            self.settings.require_credentials()
            response = self.session.login(self.settings.username, self.settings.password)
            return self._response(response, self.session.cookie)
        return self._execute("login", options, call)

    def logout(self, options: Optional[ResultOptions] = None) -> ApiResult:
        def call():
            response = self.session.logout()
            if response is None:
                return _Outcome(value=None)
            return self._response(response)
        return self._execute("logout", options, call)

    def current_time(self, options: Optional[ResultOptions] = None) -> ApiResult:
        """Server clock; data is the parsed datetime."""
        def call():
            response = invoke(self.transport, "CurrentTime", CurrentTimeParams())
            stamp = text_of(response.returnval)
            if not stamp:
                raise ProtocolError("CurrentTime response has no returnval")
            try:
                parsed = date_parser.isoparse(stamp)
            except ValueError as e:
                raise ProtocolError(f"CurrentTime returned an unreadable timestamp {stamp!r}: {e}")
            return self._response(response, parsed)
        return self._execute("current_time", options, call)

    def get_api_stats(self) -> Dict[str, Any]:
        """Total_API_Calls, Total_API_Time, Avg_API_Resp and Last_API_Resp (seconds)."""
        return self.transport.stats().to_dict()

    # Inventory and performance

    def get_inventory_info(self, object_type: str, filters: Iterable[str] = ("name",), get_all: bool = False,
                           options: Optional[ResultOptions] = None) -> ApiResult:
        """
        All objects of object_type with the requested property paths.

        Args:
            object_type: Managed object type, e.g. VirtualMachine
            filters: Property paths to retrieve (may be empty)
            get_all: Retrieve every property instead of filters
        """
        def call():
            response = self.inventory.query(object_type, filters, get_all)
            return self._response(response, parse_object_contents(response.returnval))
        return self._execute("get_inventory_info", options, call)

    def get_avail_metrics(self, object_type: str, object_id: str, begin_time=None, end_time=None,
                          interval_id: Optional[int] = None,
                          options: Optional[ResultOptions] = None) -> ApiResult:
        def call():
            response = self.perf.query_available_metrics(
                _entity(object_type, object_id), begin_time, end_time, _optional_int(interval_id)
            )
            return self._response(response, parse_metric_ids(response))
        return self._execute("get_avail_metrics", options, call)

    def get_metric_info(self, counter_ids, options: Optional[ResultOptions] = None) -> ApiResult:
        """PerfCounterInfo for counter_ids; data maps counterId -> MetricDescriptor."""
        def call():
            response = self.perf.query_counter_info(counter_ids)
            returnval = response.returnval
            if not isinstance(returnval, list):
                raise ProtocolError("QueryPerfCounter returnval is not a list")
            catalog = {}
            for entry in returnval:
                descriptor = parse_counter_info(entry)
                catalog[descriptor.counter_id] = descriptor
            return self._response(response, catalog)
        return self._execute("get_metric_info", options, call)

    def get_metric_values(self, object_type: str, object_id: str, metrics, format: str = "csv",
                          begin_time=None, end_time=None, max_sample: Optional[int] = None,
                          interval_id: Optional[int] = None,
                          options: Optional[ResultOptions] = None) -> ApiResult:
        """
        Sample values for metrics of one object.

        Args:
            metrics: [{"id": 2, "instance": ""}, ...] or MetricId objects
            format: "csv" or "normal" ("xml" is accepted as "normal")
            max_sample: Sample limit; -1 or None for no limit
            interval_id: Sampling interval; -1 or None to let the server choose
        """
        def call():
            response = self.perf.query_perf(
                _entity(object_type, object_id),
                metrics,
                format=format,
                begin_time=begin_time,
                end_time=end_time,
                max_sample=_optional_int(max_sample),
                interval_id=_optional_int(interval_id),
            )
            return self._response(response, response.returnval)
        return self._execute("get_metric_values", options, call)

    # Object listings

    def _list_objects(self, kind: PipelineKind) -> _Outcome:
        listing = {}
        for item in self.inventory.retrieve(kind.object_type, ["name"], False):
            listing[item.obj.id] = {"obj_id": item.obj.id, "kind": item.obj.kind, "name": item.text("name")}
        return _Outcome(value=listing, data=listing)

    def get_virtual_machines(self, options: Optional[ResultOptions] = None) -> ApiResult:
        return self._execute("get_virtual_machines", options, lambda: self._list_objects(VIRTUAL_MACHINES))

    def get_host_clusters(self, options: Optional[ResultOptions] = None) -> ApiResult:
        return self._execute("get_host_clusters", options, lambda: self._list_objects(COMPUTE_RESOURCES))

    def get_hosts(self, options: Optional[ResultOptions] = None) -> ApiResult:
        return self._execute("get_hosts", options, lambda: self._list_objects(HOSTS))

    # Metric catalogs

    def get_metric_defs(self, kind: PipelineKind, options: Optional[ResultOptions] = None) -> ApiResult:
        """Run the metric catalog pipeline for one kind; data is the PipelineResult."""
        def call():
            result = self.pipeline.run(kind)
            return _Outcome(value=result.to_dict(), data=result)
        return self._execute(f"get_metric_defs({kind.object_type})", options, call)

    def get_virtual_machine_metric_defs(self, options: Optional[ResultOptions] = None) -> ApiResult:
        return self.get_metric_defs(VIRTUAL_MACHINES, options)

    def get_host_cluster_metric_defs(self, options: Optional[ResultOptions] = None) -> ApiResult:
        return self.get_metric_defs(COMPUTE_RESOURCES, options)

    def get_host_metric_defs(self, options: Optional[ResultOptions] = None) -> ApiResult:
        return self.get_metric_defs(HOSTS, options)
