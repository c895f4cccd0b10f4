"""
vim-telemetry command line
==========================

Usage:
    vim-telemetry inventory VirtualMachine --filter name --filter runtime.powerState
    vim-telemetry metric-defs vm
    vim-telemetry counters 2 6 24
    vim-telemetry samples VirtualMachine vm-42 --metric 2 --metric 6:0 --max-sample 10

Connection settings come from VIM_URL, VIM_USERNAME, VIM_PASSWORD, ... and can
be overridden with options. The result is printed as JSON on stdout; errors go
to stderr with a non-zero exit code.
"""

import argparse
import json
import logging
import sys
from typing import Callable, List, Optional

import pydantic

from vim_telemetry.client import ApiResult, VimClient
from vim_telemetry.config import ClientSettings, ResultOptions, load_settings
from vim_telemetry.errors import VimApiError
from vim_telemetry.pipeline import PIPELINE_KINDS

JSON_ONLY = ResultOptions(send_raw=False, send_headers=False, send_json=True, send_value=False)


def parse_metric(value: str) -> dict:
    """COUNTER[:INSTANCE] -> {"id": COUNTER, "instance": INSTANCE}"""
    counter, _, instance = value.partition(":")
    try:
        return {"id": int(counter), "instance": instance}
    except ValueError:
        raise argparse.ArgumentTypeError(f"metric must be COUNTER[:INSTANCE], got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vim-telemetry", description="vSphere inventory and performance telemetry")
    parser.add_argument("--url", help="SDK endpoint (VIM_URL)")
    parser.add_argument("--username", help="vSphere user (VIM_USERNAME)")
    parser.add_argument("--password", help="vSphere password (VIM_PASSWORD)")
    parser.add_argument("--strict-ssl", action="store_true", default=None, help="Verify TLS certificates")
    parser.add_argument("--api-wait-ms", type=int, help="Minimum spacing between API calls")
    parser.add_argument("--max-workers", type=int, help="Parallel metric discovery calls")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    parser.add_argument("--stats", action="store_true", help="Print API call statistics to stderr")

    commands = parser.add_subparsers(dest="command", required=True)

    inventory = commands.add_parser("inventory", help="List objects of one type")
    inventory.add_argument("object_type", help="e.g. VirtualMachine, HostSystem, Datastore")
    inventory.add_argument("--filter", dest="filters", action="append", default=None,
                           help="Property path to retrieve (repeatable, default: name)")
    inventory.add_argument("--all", dest="get_all", action="store_true", help="Retrieve every property")

    metric_defs = commands.add_parser("metric-defs", help="Metric catalog for every object of a kind")
    metric_defs.add_argument("kind", choices=sorted(PIPELINE_KINDS))

    counters = commands.add_parser("counters", help="Counter metadata")
    counters.add_argument("counter_ids", type=int, nargs="+")

    samples = commands.add_parser("samples", help="Sample values for one object")
    samples.add_argument("object_type")
    samples.add_argument("object_id")
    samples.add_argument("--metric", dest="metrics", type=parse_metric, action="append", required=True,
                         help="COUNTER[:INSTANCE] (repeatable)")
    samples.add_argument("--format", default="csv", choices=["csv", "normal", "xml"])
    samples.add_argument("--begin", help="Start time (any date format, UTC if no zone)")
    samples.add_argument("--end", help="End time")
    samples.add_argument("--max-sample", type=int, default=None)
    samples.add_argument("--interval", type=int, default=None, help="Interval id, e.g. 20 or 300")

    return parser


def run_command(client: VimClient, args: argparse.Namespace) -> ApiResult:
    if args.command == "inventory":
        filters = args.filters if args.filters is not None else ["name"]
        return client.get_inventory_info(args.object_type, filters, args.get_all, options=JSON_ONLY)
    if args.command == "metric-defs":
        return client.get_metric_defs(PIPELINE_KINDS[args.kind], options=JSON_ONLY)
    if args.command == "counters":
        return client.get_metric_info(args.counter_ids, options=JSON_ONLY)
    return client.get_metric_values(
        args.object_type,
        args.object_id,
        args.metrics,
        format=args.format,
        begin_time=args.begin,
        end_time=args.end,
        max_sample=args.max_sample,
        interval_id=args.interval,
        options=JSON_ONLY,
    )


def main(argv: Optional[List[str]] = None,
         client_factory: Callable[[ClientSettings], VimClient] = VimClient) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(
            url=args.url,
            username=args.username,
            password=args.password,
            strict_ssl=args.strict_ssl,
            api_wait_ms=args.api_wait_ms,
            max_workers=args.max_workers,
            log_level=args.log_level,
        )
    except pydantic.ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        client = client_factory(settings)
    except VimApiError as e:
        print(f"error: {e.message}", file=sys.stderr)
        return 1

    with client:
        login = client.login(options=ResultOptions.value_only())
        if login.error:
            print(f"error: {login.error}", file=sys.stderr)
            return 1

        result = run_command(client, args)
        client.logout(options=ResultOptions.value_only())

        if args.stats:
            print(json.dumps(client.get_api_stats()), file=sys.stderr)

    if result.error:
        print(f"error: {result.error}", file=sys.stderr)
        return 1

    print(result.json_text)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
