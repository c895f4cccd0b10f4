import json
import unittest
from datetime import datetime, timezone

from vim_telemetry.client import ApiResult, VimClient
from vim_telemetry.config import ClientSettings, ResultOptions
from vim_telemetry.models import MetricId, PipelineResult
from vim_telemetry.tests.fakes import ScenarioSender, fault_reply

INVENTORY = {
    "VirtualMachine": [("vm-A", "A"), ("vm-B", "B")],
    "ComputeResource": [("domain-c7", "Cluster-01")],
    "HostSystem": [("host-10", "esx01.lab")],
}
METRICS = {
    "vm-A": [(2, ""), (6, "")],
    "vm-B": [(6, ""), (24, "")],
    "domain-c7": [(2, ""), (24, "")],
    "host-10": [(2, ""), (143, "vmnic0")],
}


def make_settings(**overrides):
    values = dict(url="https://vc.example.com/sdk", username="monitor", password="secret")
    values.update(overrides)
    return ClientSettings(**values)


def make_client(sender=None, **overrides):
    sender = sender or ScenarioSender(inventory=INVENTORY, metrics=METRICS)
    return VimClient(make_settings(**overrides), sender=sender), sender


class ResultOptionsTests(unittest.TestCase):
    def test_default_options_populate_everything(self):
        client, _ = make_client()
        result = client.discover_service()

        self.assertEqual(result.error, "")
        self.assertIsNone(result.error_type)
        self.assertTrue(result.raw.startswith(b"<?xml"))
        self.assertIsNotNone(result.headers)
        self.assertEqual(json.loads(result.json_text), result.value)
        self.assertIn("perfManager", result.data)

    def test_value_only(self):
        client, _ = make_client()
        result = client.discover_service(options=ResultOptions.value_only())

        self.assertIsNone(result.raw)
        self.assertIsNone(result.headers)
        self.assertIsNone(result.json_text)
        self.assertIsNotNone(result.value)

    def test_json_only(self):
        client, _ = make_client()
        client.login()
        options = ResultOptions(send_raw=False, send_headers=False, send_json=True, send_value=False)

        result = client.get_virtual_machines(options=options)

        self.assertIsNone(result.value)
        self.assertIsNone(result.data)
        self.assertEqual(json.loads(result.json_text)["vm-A"], {"obj_id": "vm-A", "kind": "VirtualMachine", "name": "A"})

    def test_options_do_not_leak_between_calls(self):
        client, _ = make_client()
        client.discover_service(options=ResultOptions.value_only())
        result = client.discover_service()
        self.assertIsNotNone(result.raw)


class ErrorFieldTests(unittest.TestCase):
    def test_not_logged_in(self):
        client, sender = make_client()

        result = client.get_virtual_machine_metric_defs()

        self.assertEqual(result.error, "Must log in before issuing commands")
        self.assertEqual(result.error_type, "SessionError")
        self.assertFalse(result.ok)
        self.assertIsNone(result.value)
        self.assertEqual(sender.calls, [])

    def test_missing_url(self):
        client, sender = make_client(url="")
        result = client.discover_service()
        self.assertEqual(result.error, "URL is not set.")
        self.assertEqual(result.error_type, "ConfigError")
        self.assertEqual(sender.calls, [])

    def test_missing_credentials(self):
        client, sender = make_client(password="")
        result = client.login()
        self.assertEqual(result.error, "Must set URL, Username, and Password")
        self.assertEqual(sender.calls, [])

    def test_login_fault(self):
        sender = ScenarioSender(replies={"Login": fault_reply("InvalidLogin", "incorrect user name or password")})
        client, _ = make_client(sender)
        result = client.login()
        self.assertEqual(result.error_type, "SessionError")
        self.assertIn("incorrect user name or password", result.error)

    def test_malformed_metric_definitions(self):
        client, _ = make_client()
        client.login()
        result = client.get_metric_values("VirtualMachine", "vm-A", [{"id": 2}])
        self.assertEqual(result.error_type, "ValidationError")
        self.assertIn("id and instance", result.error)

    def test_missing_object_id(self):
        client, _ = make_client()
        client.login()
        result = client.get_avail_metrics("VirtualMachine", "")
        self.assertEqual(result.error, "Invalid function call, must supply itemType and itemID")


class OperationTests(unittest.TestCase):
    def setUp(self):
        self.client, self.sender = make_client()
        login = self.client.login()
        self.assertTrue(login.ok, login.error)

    def test_login_returns_cookie(self):
        self.assertIn("vmware_soap_session", self.client.session.cookie)

    def test_inventory_info(self):
        result = self.client.get_inventory_info("HostSystem", ["name"])
        self.assertEqual(result.data[0].text("name"), "esx01.lab")
        self.assertIsInstance(result.value["returnval"], list)

    def test_listings(self):
        self.assertEqual(list(self.client.get_virtual_machines().value), ["vm-A", "vm-B"])
        self.assertEqual(self.client.get_host_clusters().value["domain-c7"]["name"], "Cluster-01")
        self.assertEqual(self.client.get_hosts().value["host-10"]["kind"], "HostSystem")

    def test_avail_metrics_and_info(self):
        metrics = self.client.get_avail_metrics("VirtualMachine", "vm-B", interval_id=-1)
        self.assertEqual(metrics.data, [MetricId(6, ""), MetricId(24, "")])
        request = self.sender.calls_to("QueryAvailablePerfMetric")[0].request
        self.assertIsNone(request.find("intervalId"))

        info = self.client.get_metric_info([6, 24])
        self.assertEqual(info.data[24].label, "Memory - Usage")

    def test_metric_values(self):
        result = self.client.get_metric_values("VirtualMachine", "vm-A", [{"id": 2, "instance": ""}],
                                               max_sample=-1, interval_id=20)
        self.assertTrue(result.ok, result.error)
        spec = self.sender.calls_to("QueryPerf")[0].request.find("querySpec")
        self.assertIsNone(spec.find("maxSample"))
        self.assertEqual(spec.findtext("intervalId"), "20")

    def test_metric_defs(self):
        result = self.client.get_virtual_machine_metric_defs()
        self.assertIsInstance(result.data, PipelineResult)
        self.assertEqual(sorted(result.value["catalog"]), ["2", "24", "6"])
        self.assertEqual(result.value["objects"][1]["metric_defs"][1]["name"], "Memory - Usage")
        self.assertIsNone(result.raw)

        clusters = self.client.get_host_cluster_metric_defs()
        self.assertEqual(clusters.value["objects"][0]["kind"], "ComputeResource")

        hosts = self.client.get_host_metric_defs()
        self.assertEqual(hosts.value["objects"][0]["metric_defs"][1]["instance"], "vmnic0")

    def test_current_time(self):
        result = self.client.current_time()
        self.assertEqual(result.data, datetime(2026, 10, 16, 8, 30, 0, 123456, tzinfo=timezone.utc))

    def test_api_stats(self):
        stats = self.client.get_api_stats()
        self.assertEqual(stats["Total_API_Calls"], 2)
        self.assertGreaterEqual(stats["Avg_API_Resp"], 0)

    def test_logout(self):
        result = self.client.logout()
        self.assertTrue(result.ok)
        self.assertIsNone(self.client.session.cookie)
        after = self.client.get_hosts()
        self.assertEqual(after.error_type, "SessionError")

    def test_context_manager_closes_sender(self):
        with self.client:
            pass
        self.assertTrue(self.sender.closed)


class ApiResultTests(unittest.TestCase):
    def test_defaults(self):
        result = ApiResult()
        self.assertTrue(result.ok)
        self.assertEqual(result.error, "")


if __name__ == "__main__":
    unittest.main()
