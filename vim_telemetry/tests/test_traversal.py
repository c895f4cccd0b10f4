import unittest

from vim_telemetry.errors import ProtocolError, SessionError, ValidationError
from vim_telemetry.models import ObjectRef, TraversalSpec
from vim_telemetry.session import SessionManager
from vim_telemetry.transport import PacedTransport
from vim_telemetry.traversal import (
    INVENTORY_TRAVERSAL,
    InventoryTraversal,
    check_traversal_graph,
    parse_object_contents,
)
from vim_telemetry.tests.fakes import ScenarioSender, fault_reply

INVENTORY = {
    "VirtualMachine": [("vm-101", "web-01"), ("vm-102", "db-01")],
    "HostSystem": [("host-10", "esx01.lab")],
}


def logged_in(sender):
    session = SessionManager(PacedTransport(sender))
    session.login("monitor", "secret")
    return InventoryTraversal(session)


class TraversalGraphTests(unittest.TestCase):
    def test_builtin_graph_is_closed(self):
        check_traversal_graph(INVENTORY_TRAVERSAL)
        names = {spec.name for spec in INVENTORY_TRAVERSAL}
        self.assertIn("folderTraversalSpec", names)
        self.assertIn("resourcePoolVmTraversalSpec", names)
        self.assertEqual(len(names), len(INVENTORY_TRAVERSAL))

    def test_unknown_reference_rejected(self):
        with self.assertRaises(ValidationError):
            check_traversal_graph([TraversalSpec("a", "Folder", "childEntity", ("missing",))])

    def test_duplicate_name_rejected(self):
        spec = TraversalSpec("a", "Folder", "childEntity")
        with self.assertRaises(ValidationError):
            check_traversal_graph([spec, spec])


class RetrieveTests(unittest.TestCase):
    def test_retrieve_returns_objects_in_order(self):
        sender = ScenarioSender(inventory=INVENTORY)
        traversal = logged_in(sender)

        objects = traversal.retrieve("VirtualMachine", ["name"])

        self.assertEqual([item.obj for item in objects],
                         [ObjectRef("VirtualMachine", "vm-101"), ObjectRef("VirtualMachine", "vm-102")])
        self.assertEqual([item.text("name") for item in objects], ["web-01", "db-01"])

    def test_request_embeds_traversal_graph(self):
        sender = ScenarioSender(inventory=INVENTORY)
        traversal = logged_in(sender)

        traversal.retrieve("HostSystem", ["name", "name", "summary.hardware"])

        request = sender.calls_to("RetrieveProperties")[0].request
        self.assertEqual(request.findtext("specSet/propSet/type"), "HostSystem")
        self.assertEqual([p.text for p in request.findall("specSet/propSet/pathSet")], ["name", "summary.hardware"])
        selects = request.findall("specSet/objectSet/selectSet")
        self.assertEqual(len(selects), len(INVENTORY_TRAVERSAL))
        self.assertEqual(request.find("specSet/objectSet/obj").text, "group-d1")
        self.assertEqual(request.find("_this").text, "propertyCollector")

    def test_no_objects_is_empty_list(self):
        traversal = logged_in(ScenarioSender(inventory=INVENTORY))
        self.assertEqual(traversal.retrieve("Datastore"), [])

    def test_empty_filters_are_allowed(self):
        sender = ScenarioSender(inventory=INVENTORY)
        traversal = logged_in(sender)
        traversal.retrieve("VirtualMachine", [], include_all=True)
        request = sender.calls_to("RetrieveProperties")[0].request
        self.assertEqual(request.findtext("specSet/propSet/all"), "true")

    def test_requires_login_without_network(self):
        sender = ScenarioSender(inventory=INVENTORY)
        traversal = InventoryTraversal(SessionManager(PacedTransport(sender)))

        with self.assertRaises(SessionError):
            traversal.retrieve("VirtualMachine")
        self.assertEqual(sender.calls, [])

    def test_argument_validation(self):
        sender = ScenarioSender(inventory=INVENTORY)
        traversal = logged_in(sender)
        calls_before = len(sender.calls)

        with self.assertRaises(ValidationError):
            traversal.retrieve("")
        with self.assertRaises(ValidationError):
            traversal.retrieve("VirtualMachine", "name")
        with self.assertRaises(ValidationError):
            traversal.retrieve("VirtualMachine", ["name", ""])
        self.assertEqual(len(sender.calls), calls_before)

    def test_invalid_type_fault(self):
        sender = ScenarioSender(replies={"RetrieveProperties": fault_reply("InvalidType", "Invalid type: VirtualMachin")})
        traversal = logged_in(sender)
        with self.assertRaises(ProtocolError) as ctx:
            traversal.retrieve("VirtualMachin")
        self.assertEqual(ctx.exception.fault_type, "InvalidType")


class ParseObjectContentsTests(unittest.TestCase):
    def test_missing_response_shape(self):
        with self.assertRaises(ProtocolError):
            parse_object_contents(None)
        with self.assertRaises(ProtocolError):
            parse_object_contents({"obj": "vm-1"})

    def test_object_without_properties(self):
        contents = parse_object_contents([{"obj": {"@": {"type": "Folder"}, "#text": "group-v3"}, "propSet": []}])
        self.assertEqual(contents[0].obj, ObjectRef("Folder", "group-v3"))
        self.assertEqual(contents[0].properties, {})


if __name__ == "__main__":
    unittest.main()
