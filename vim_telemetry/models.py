"""
Data model shared by the session, inventory and performance layers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# Key holding the text of a leaf element that also carries attributes
TEXT_KEY = "#text"


def text_of(value: Any, default: str = "") -> str:
    """Text of a transcoded leaf, whether plain or attribute-carrying."""
    if value is None:
        return default
    if isinstance(value, dict):
        text = value.get(TEXT_KEY)
        return default if text is None else str(text)
    if isinstance(value, list):
        return text_of(value[-1], default) if value else default
    return str(value)


class SessionState(Enum):
    """Authentication progress of a session"""
    UNAUTHENTICATED = "unauthenticated"
    SERVICE_DISCOVERED = "service_discovered"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class ObjectRef:
    """Managed object reference (MoRef), opaque and session scoped"""
    kind: str   # VirtualMachine, HostSystem, Folder, ...
    id: str     # vm-42, host-10, group-d1, ...

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


@dataclass(frozen=True)
class TraversalSpec:
    """
    One hierarchy-walk rule: from objects of `type`, follow `path`, then
    apply the specs named in `select_set`. Recursion is expressed by naming
    a spec (possibly this one), never by nesting it.
    """
    name: str
    type: str
    path: str
    select_set: Tuple[str, ...] = ()
    skip: bool = False


@dataclass
class PropertySet:
    """One object and the properties retrieved for it"""
    obj: ObjectRef
    properties: Dict[str, Any] = field(default_factory=dict)

    def text(self, path: str, default: str = "") -> str:
        """Property value as text; typed leaves are unwrapped."""
        return text_of(self.properties.get(path), default)


@dataclass(frozen=True)
class MetricId:
    """Counter plus instance, as returned by QueryAvailablePerfMetric"""
    counter_id: int
    instance: str = ""


@dataclass(frozen=True)
class MetricDescriptor:
    """Performance counter metadata from QueryPerfCounter"""
    counter_id: int
    group_label: str
    name_label: str
    description: str
    unit: str
    rollup_type: str
    stats_type: str
    level: Optional[int] = None
    group_key: str = ""
    name_key: str = ""
    unit_key: str = ""

    @property
    def label(self) -> str:
        return f"{self.group_label} - {self.name_label}"

    @property
    def full_key(self) -> str:
        """Dotted counter name, e.g. cpu.usage.average"""
        return ".".join(part for part in (self.group_key, self.name_key, self.rollup_type) if part)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "counterId": self.counter_id,
            "key": self.full_key,
            "name": self.label,
            "desc": self.description,
            "unit": self.unit,
            "rollupType": self.rollup_type,
            "statsType": self.stats_type,
            "level": self.level,
        }


@dataclass(frozen=True)
class EnrichedMetric:
    """A discovered metric joined to its shared descriptor"""
    descriptor: MetricDescriptor
    instance: str

    def to_dict(self) -> Dict[str, Any]:
        data = self.descriptor.to_dict()
        data["instance"] = self.instance
        return data


@dataclass
class EnrichedObject:
    """Inventory object with its metric catalog"""
    obj: ObjectRef
    name: str
    metrics: List[EnrichedMetric] = field(default_factory=list)

    @property
    def counter_ids(self) -> List[int]:
        return [metric.descriptor.counter_id for metric in self.metrics]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "obj_id": self.obj.id,
            "kind": self.obj.kind,
            "name": self.name,
            "metric_defs": [metric.to_dict() for metric in self.metrics],
        }


@dataclass
class PipelineResult:
    """Enriched objects plus the catalog their descriptors are drawn from"""
    objects: List[EnrichedObject]
    catalog: Dict[int, MetricDescriptor]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "objects": [item.to_dict() for item in self.objects],
            "catalog": {str(counter_id): descriptor.to_dict() for counter_id, descriptor in self.catalog.items()},
        }


@dataclass
class ApiStats:
    """Call statistics for one transport"""
    total_calls: int = 0
    total_time: float = 0.0
    average_latency: float = 0.0
    last_latency: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "Total_API_Calls": self.total_calls,
            "Total_API_Time": self.total_time,
            "Avg_API_Resp": self.average_latency,
            "Last_API_Resp": self.last_latency,
        }

