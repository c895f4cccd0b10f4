import io
import json
import unittest
from contextlib import redirect_stderr, redirect_stdout

from vim_telemetry.cli import main, parse_metric
from vim_telemetry.client import VimClient
from vim_telemetry.tests.fakes import ScenarioSender, fault_reply

INVENTORY = {"VirtualMachine": [("vm-A", "A"), ("vm-B", "B")]}
METRICS = {"vm-A": [(2, ""), (6, "")], "vm-B": [(6, ""), (24, "")]}

CONNECTION = ["--url", "https://vc.example.com/sdk", "--username", "monitor", "--password", "secret"]


class CliTests(unittest.TestCase):
    def setUp(self):
        self.sender = ScenarioSender(inventory=INVENTORY, metrics=METRICS)

    def run_cli(self, *argv):
        stdout, stderr = io.StringIO(), io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            code = main(CONNECTION + list(argv), client_factory=lambda settings: VimClient(settings, sender=self.sender))
        return code, stdout.getvalue(), stderr.getvalue()

    def test_metric_defs(self):
        code, out, _ = self.run_cli("metric-defs", "vm")

        self.assertEqual(code, 0)
        catalog = json.loads(out)["catalog"]
        self.assertEqual(list(catalog), ["2", "6", "24"])
        self.assertEqual(self.sender.operations()[-1], "Logout")

    def test_inventory_with_filters(self):
        code, out, _ = self.run_cli("inventory", "VirtualMachine", "--filter", "name", "--filter", "config.uuid")

        self.assertEqual(code, 0)
        self.assertEqual(len(json.loads(out)["returnval"]), 2)
        request = self.sender.calls_to("RetrieveProperties")[0].request
        self.assertEqual([p.text for p in request.findall("specSet/propSet/pathSet")], ["name", "config.uuid"])

    def test_samples(self):
        code, out, _ = self.run_cli("samples", "VirtualMachine", "vm-A", "--metric", "2", "--metric", "6:0")
        self.assertEqual(code, 0)
        self.assertIn("returnval", json.loads(out))

    def test_stats_go_to_stderr(self):
        code, _, err = self.run_cli("--stats", "counters", "2", "24")
        self.assertEqual(code, 0)
        stats = json.loads(err.strip().splitlines()[-1])
        self.assertEqual(stats["Total_API_Calls"], 4)

    def test_login_failure_exits_non_zero(self):
        self.sender.replies["Login"] = fault_reply("InvalidLogin", "incorrect user name or password")
        code, out, err = self.run_cli("counters", "2")
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertIn("incorrect user name or password", err)

    def test_fault_on_command_exits_non_zero(self):
        self.sender.replies["QueryPerfCounter"] = fault_reply("NoPermission", "Permission to perform this operation was denied.")
        code, out, err = self.run_cli("counters", "2")
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertIn("Permission to perform this operation was denied.", err)


class ParseMetricTests(unittest.TestCase):
    def test_counter_and_instance(self):
        self.assertEqual(parse_metric("6:vmnic0"), {"id": 6, "instance": "vmnic0"})
        self.assertEqual(parse_metric("2"), {"id": 2, "instance": ""})


if __name__ == "__main__":
    unittest.main()
