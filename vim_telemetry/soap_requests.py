"""
vim25 SOAP Request Builder

Every operation the client issues is registered here under its SOAP name,
with a typed parameter model, a renderer for the operation element and the
cardinality schema used to decode its response. Payloads are assembled with
ElementTree so all text and attribute values are escaped in one place.
"""

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Type

import pydantic
from dateutil import parser as date_parser
from pydantic import BaseModel, Field, field_validator

from vim_telemetry.errors import ValidationError
from vim_telemetry.models import MetricId, ObjectRef, TraversalSpec
from vim_telemetry.transcoder import EMPTY_SCHEMA, CardinalitySchema

SOAPENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
XSD_NS = "http://www.w3.org/2001/XMLSchema"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
VIM25_NS = "urn:vim25"

SERVICE_INSTANCE = ObjectRef(kind="ServiceInstance", id="ServiceInstance")


def format_time(value: Optional[datetime]) -> Optional[str]:
    """UTC timestamp as YYYY-MM-DDTHH:MM:SSZ; naive datetimes are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_time(value):
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            return date_parser.parse(value)
        except (ValueError, OverflowError) as e:
            raise ValueError(f"unrecognised date/time {value!r}: {e}")
    return value


# =============================================================================
# Parameter models
# =============================================================================

class RetrieveServiceContentParams(BaseModel):
    service_instance: ObjectRef = SERVICE_INSTANCE


class CurrentTimeParams(BaseModel):
    service_instance: ObjectRef = SERVICE_INSTANCE


class LoginParams(BaseModel):
    session_manager: ObjectRef
    user_name: str = Field(min_length=1)
    password: str = Field(min_length=1)


class LogoutParams(BaseModel):
    session_manager: ObjectRef


class RetrievePropertiesParams(BaseModel):
    property_collector: ObjectRef
    root_folder: ObjectRef
    object_type: str = Field(min_length=1)
    path_set: List[str] = []
    include_all: bool = False
    traversal: List[TraversalSpec] = []


class QueryAvailablePerfMetricParams(BaseModel):
    perf_manager: ObjectRef
    entity: ObjectRef
    begin_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    interval_id: Optional[int] = None

    @field_validator("begin_time", "end_time", mode="before")
    @classmethod
    def parse_times(cls, value):
        return _parse_time(value)


class QueryPerfCounterParams(BaseModel):
    perf_manager: ObjectRef
    counter_ids: List[int] = Field(min_length=1)


class QueryPerfParams(BaseModel):
    perf_manager: ObjectRef
    entity: ObjectRef
    metric_ids: List[MetricId] = Field(min_length=1)
    begin_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    max_sample: Optional[int] = None
    interval_id: Optional[int] = None
    format: str = "csv"

    @field_validator("begin_time", "end_time", mode="before")
    @classmethod
    def parse_times(cls, value):
        return _parse_time(value)

    @field_validator("format", mode="before")
    @classmethod
    def normalize_format(cls, value):
        value = (value or "csv").lower()
        if value == "xml":
            return "normal"
        if value not in ("csv", "normal"):
            raise ValueError("format must be 'csv' or 'normal'")
        return value


def make_params(model: Type[BaseModel], **kwargs) -> BaseModel:
    """Instantiate a parameter model, reporting bad arguments as ValidationError."""
    try:
        return model(**kwargs)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
        )
        raise ValidationError(f"Invalid arguments for {model.__name__}: {problems}")


# =============================================================================
# Rendering helpers
# =============================================================================

def _leaf(parent: ET.Element, tag: str, text, attrib: Optional[Dict[str, str]] = None) -> ET.Element:
    element = ET.SubElement(parent, tag, attrib or {})
    element.text = "" if text is None else str(text)
    return element


def _ref(parent: ET.Element, tag: str, ref: ObjectRef) -> ET.Element:
    attrib = {"type": ref.kind} if ref.kind else {}
    return _leaf(parent, tag, ref.id, attrib)


def _bool(value: bool) -> str:
    return "true" if value else "false"


# =============================================================================
# Operation registry
# =============================================================================

@dataclass(frozen=True)
class Operation:
    name: str
    params: Type[BaseModel]
    render: Callable[[BaseModel, ET.Element], None]
    schema: CardinalitySchema = EMPTY_SCHEMA


OPERATIONS: Dict[str, Operation] = {}


def operation(name: str, params: Type[BaseModel], schema: CardinalitySchema = EMPTY_SCHEMA):
    def register(render):
        OPERATIONS[name] = Operation(name=name, params=params, render=render, schema=schema)
        return render
    return register


@operation("RetrieveServiceContent", RetrieveServiceContentParams)
def _render_service_content(params: RetrieveServiceContentParams, op: ET.Element):
    _ref(op, "_this", params.service_instance)


@operation("CurrentTime", CurrentTimeParams)
def _render_current_time(params: CurrentTimeParams, op: ET.Element):
    _ref(op, "_this", params.service_instance)


@operation("Login", LoginParams)
def _render_login(params: LoginParams, op: ET.Element):
    _ref(op, "_this", params.session_manager)
    _leaf(op, "userName", params.user_name)
    _leaf(op, "password", params.password)


@operation("Logout", LogoutParams)
def _render_logout(params: LogoutParams, op: ET.Element):
    _ref(op, "_this", params.session_manager)


@operation(
    "RetrieveProperties",
    RetrievePropertiesParams,
    CardinalitySchema.of(
        containers={
            "RetrievePropertiesResponse": ("returnval",),
            "returnval": ("propSet", "missingSet"),
        },
    ),
)
def _render_retrieve_properties(params: RetrievePropertiesParams, op: ET.Element):
    _ref(op, "_this", params.property_collector)
    spec_set = ET.SubElement(op, "specSet")

    prop_set = ET.SubElement(spec_set, "propSet")
    _leaf(prop_set, "type", params.object_type)
    _leaf(prop_set, "all", _bool(params.include_all))
    for path in params.path_set:
        _leaf(prop_set, "pathSet", path)

    object_set = ET.SubElement(spec_set, "objectSet")
    _ref(object_set, "obj", params.root_folder)
    _leaf(object_set, "skip", _bool(False))
    for spec in params.traversal:
        select = ET.SubElement(object_set, "selectSet", {"xsi:type": "TraversalSpec"})
        _leaf(select, "name", spec.name)
        _leaf(select, "type", spec.type)
        _leaf(select, "path", spec.path)
        _leaf(select, "skip", _bool(spec.skip))
        for referenced in spec.select_set:
            reference = ET.SubElement(select, "selectSet")
            _leaf(reference, "name", referenced)


@operation(
    "QueryAvailablePerfMetric",
    QueryAvailablePerfMetricParams,
    CardinalitySchema.of(containers={"QueryAvailablePerfMetricResponse": ("returnval",)}),
)
def _render_available_metrics(params: QueryAvailablePerfMetricParams, op: ET.Element):
    _ref(op, "_this", params.perf_manager)
    _ref(op, "entity", params.entity)
    if params.begin_time is not None:
        _leaf(op, "beginTime", format_time(params.begin_time))
    if params.end_time is not None:
        _leaf(op, "endTime", format_time(params.end_time))
    if params.interval_id is not None:
        _leaf(op, "intervalId", params.interval_id)


@operation(
    "QueryPerfCounter",
    QueryPerfCounterParams,
    CardinalitySchema.of(containers={"QueryPerfCounterResponse": ("returnval",)}),
)
def _render_perf_counter(params: QueryPerfCounterParams, op: ET.Element):
    _ref(op, "_this", params.perf_manager)
    for counter_id in params.counter_ids:
        _leaf(op, "counterId", counter_id)


@operation(
    "QueryPerf",
    QueryPerfParams,
    CardinalitySchema.of(
        containers={
            "QueryPerfResponse": ("returnval",),
            "returnval": ("sampleInfo", "value"),
        },
    ),
)
def _render_query_perf(params: QueryPerfParams, op: ET.Element):
    _ref(op, "_this", params.perf_manager)
    spec = ET.SubElement(op, "querySpec")
    _ref(spec, "entity", params.entity)
    if params.begin_time is not None:
        _leaf(spec, "startTime", format_time(params.begin_time))
    if params.end_time is not None:
        _leaf(spec, "endTime", format_time(params.end_time))
    if params.max_sample is not None:
        _leaf(spec, "maxSample", params.max_sample)
    for metric in params.metric_ids:
        metric_id = ET.SubElement(spec, "metricId")
        _leaf(metric_id, "counterId", int(metric.counter_id))
        _leaf(metric_id, "instance", metric.instance)
    if params.interval_id is not None:
        _leaf(spec, "intervalId", params.interval_id)
    _leaf(spec, "format", params.format)


# =============================================================================
# Public API
# =============================================================================

def get_operation(name: str) -> Operation:
    try:
        return OPERATIONS[name]
    except KeyError:
        raise ValidationError(f"Unknown SOAP operation: {name}")


def build_request(name: str, params: BaseModel) -> bytes:
    """
    Render the SOAP envelope for one operation.

    Raises:
        ValidationError: Unknown operation or parameter model mismatch
    """
    op = get_operation(name)
    if not isinstance(params, op.params):
        raise ValidationError(f"{name} expects {op.params.__name__}, got {type(params).__name__}")

    envelope = ET.Element("soapenv:Envelope", {
        "xmlns:soapenv": SOAPENV_NS,
        "xmlns:xsd": XSD_NS,
        "xmlns:xsi": XSI_NS,
    })
    ET.SubElement(envelope, "soapenv:Header")
    body = ET.SubElement(envelope, "soapenv:Body")
    op_element = ET.SubElement(body, name, {"xmlns": VIM25_NS})
    op.render(params, op_element)

    return ET.tostring(envelope, encoding="utf-8", xml_declaration=True)


def response_schema(name: str) -> CardinalitySchema:
    return get_operation(name).schema
