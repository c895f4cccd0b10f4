"""
vCenter PropertyCollector-Based Inventory Traversal

One RetrieveProperties call walks the whole inventory from the root folder
using a fixed, self-referencing TraversalSpec graph, so callers never have
to know how deeply folders, clusters and resource pools are nested.
"""

import logging
from typing import Any, Iterable, List, Tuple

from vim_telemetry.errors import ProtocolError, ValidationError
from vim_telemetry.invoker import SoapResponse, invoke
from vim_telemetry.models import PropertySet, TraversalSpec
from vim_telemetry.soap_requests import RetrievePropertiesParams, make_params
from vim_telemetry.transcoder import ref_of, text_of

logger = logging.getLogger(__name__)

FOLDER_TRAVERSAL = "folderTraversalSpec"


# =============================================================================
# Traversal graph
# =============================================================================

INVENTORY_TRAVERSAL: Tuple[TraversalSpec, ...] = (
    TraversalSpec(
        name=FOLDER_TRAVERSAL, type="Folder", path="childEntity",
        select_set=(
            FOLDER_TRAVERSAL,
            "datacenterHostTraversalSpec",
            "datacenterVmTraversalSpec",
            "datacenterDatastoreTraversalSpec",
            "datacenterNetworkTraversalSpec",
            "computeResourceRpTraversalSpec",
            "computeResourceHostTraversalSpec",
            "hostVmTraversalSpec",
            "resourcePoolVmTraversalSpec",
        ),
    ),
    TraversalSpec(name="datacenterDatastoreTraversalSpec", type="Datacenter", path="datastoreFolder",
                  select_set=(FOLDER_TRAVERSAL,)),
    TraversalSpec(name="datacenterNetworkTraversalSpec", type="Datacenter", path="networkFolder",
                  select_set=(FOLDER_TRAVERSAL,)),
    TraversalSpec(name="datacenterVmTraversalSpec", type="Datacenter", path="vmFolder",
                  select_set=(FOLDER_TRAVERSAL,)),
    TraversalSpec(name="datacenterHostTraversalSpec", type="Datacenter", path="hostFolder",
                  select_set=(FOLDER_TRAVERSAL,)),
    TraversalSpec(name="computeResourceHostTraversalSpec", type="ComputeResource", path="host"),
    TraversalSpec(name="computeResourceRpTraversalSpec", type="ComputeResource", path="resourcePool",
                  select_set=("resourcePoolTraversalSpec", "resourcePoolVmTraversalSpec")),
    TraversalSpec(name="resourcePoolTraversalSpec", type="ResourcePool", path="resourcePool",
                  select_set=("resourcePoolTraversalSpec", "resourcePoolVmTraversalSpec")),
    TraversalSpec(name="hostVmTraversalSpec", type="HostSystem", path="vm",
                  select_set=(FOLDER_TRAVERSAL,)),
    TraversalSpec(name="resourcePoolVmTraversalSpec", type="ResourcePool", path="vm"),
)


def check_traversal_graph(specs: Iterable[TraversalSpec]) -> None:
    """Every referenced spec name must be defined exactly once."""
    specs = list(specs)
    names = [spec.name for spec in specs]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ValidationError(f"Duplicate traversal spec names: {', '.join(duplicates)}")
    known = set(names)
    for spec in specs:
        unknown = [ref for ref in spec.select_set if ref not in known]
        if unknown:
            raise ValidationError(f"Traversal spec {spec.name} references unknown specs: {', '.join(unknown)}")


check_traversal_graph(INVENTORY_TRAVERSAL)


def _normalize_paths(property_paths) -> List[str]:
    if isinstance(property_paths, (str, bytes)) or not isinstance(property_paths, Iterable):
        raise ValidationError("Must supply array of filters. (Hint: Empty array is ok)")
    paths: List[str] = []
    for path in property_paths:
        if not isinstance(path, str) or not path:
            raise ValidationError(f"Property paths must be non-empty strings, got {path!r}")
        if path not in paths:
            paths.append(path)
    return paths


def parse_object_contents(returnval: Any) -> List[PropertySet]:
    """
    Flatten RetrieveProperties ObjectContent entries into PropertySets.

    Property values are kept as transcoded; only names are read.
    """
    if returnval is None:
        raise ProtocolError("RetrievePropertiesResponse is missing from the response body")
    if not isinstance(returnval, list):
        raise ProtocolError("RetrieveProperties returnval is not a list")

    results: List[PropertySet] = []
    for content in returnval:
        if not isinstance(content, dict):
            raise ProtocolError("RetrieveProperties returned a malformed ObjectContent")
        obj = ref_of(content.get("obj"))
        if obj is None:
            raise ProtocolError("ObjectContent without an object reference")

        properties = {}
        for prop in content.get("propSet", []):
            if not isinstance(prop, dict) or "name" not in prop:
                raise ProtocolError(f"Malformed property entry for {obj}")
            properties[text_of(prop["name"])] = prop.get("val")
        results.append(PropertySet(obj=obj, properties=properties))
    return results


class InventoryTraversal:
    """Runs inventory-wide RetrieveProperties queries for one session."""

    def __init__(self, session, traversal: Iterable[TraversalSpec] = INVENTORY_TRAVERSAL):
        """
        Args:
            session: SessionManager owning the transport and service refs
            traversal: TraversalSpec graph rooted at the root folder
        """
        self.session = session
        self.traversal = tuple(traversal)
        check_traversal_graph(self.traversal)

    def query(self, object_type: str, property_paths=("name",), include_all: bool = False) -> SoapResponse:
        """Run RetrieveProperties and return the decoded response."""
        if not object_type:
            raise ValidationError("Invalid function call, must supply itemType")
        paths = _normalize_paths(property_paths)
        self.session.require_authenticated()

        params = make_params(
            RetrievePropertiesParams,
            property_collector=self.session.service("propertyCollector"),
            root_folder=self.session.service("rootFolder"),
            object_type=object_type,
            path_set=paths,
            include_all=include_all,
            traversal=list(self.traversal),
        )
        return invoke(self.session.transport, "RetrieveProperties", params)

    def retrieve(self, object_type: str, property_paths=("name",), include_all: bool = False) -> List[PropertySet]:
        """
        All objects of object_type reachable from the root folder.

        Raises:
            ValidationError: Empty object_type or non-array property_paths
            SessionError: Not logged in
        """
        response = self.query(object_type, property_paths, include_all)
        results = parse_object_contents(response.returnval)
        logger.info(f"Inventory traversal returned {len(results)} {object_type} objects")
        return results
