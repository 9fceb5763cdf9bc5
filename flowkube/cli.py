import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

import yaml

from flowkube import config
from flowkube.errors import FlowKubeError, ValidationError

logger = logging.getLogger("flowkube.cli")


def _parse_param(raw: str) -> tuple:
    key, sep, value = raw.partition("=")
    if not sep or not key:
        raise ValidationError(f"--param expects key=value, got {raw!r}")
    try:
        # let numbers, booleans and JSON arrays/objects through typed
        return key, yaml.safe_load(value) if value else value
    except yaml.YAMLError:
        return key, value


def load_items(params_file: Optional[str], params: List[str]) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = [{}]
    if params_file:
        with open(params_file, encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh)
        if loaded is None:
            loaded = {}
        if isinstance(loaded, dict):
            items = [loaded]
        elif isinstance(loaded, list) and all(isinstance(i, dict) for i in loaded):
            items = loaded or [{}]
        else:
            raise ValidationError(f"{params_file} must hold a mapping or a list of mappings")

    overrides = dict(_parse_param(p) for p in params)
    return [{**item, **overrides} for item in items]


def build_parser() -> argparse.ArgumentParser:
    from flowkube.engine.dispatcher import OPERATIONS

    parser = argparse.ArgumentParser(prog="flowkube", description="Kubernetes automation operations")
    parser.add_argument("operation", choices=OPERATIONS, help="Operation to run")
    parser.add_argument("--params", help="YAML/JSON file with one item (mapping) or several (list)")
    parser.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Set a parameter on every item; may be repeated",
    )
    parser.add_argument(
        "--load-from",
        choices=("automatic", "file", "content"),
        default="automatic",
        help="Where cluster credentials come from",
    )
    parser.add_argument("--kubeconfig", help="Kubeconfig path (with --load-from file)")
    parser.add_argument(
        "--kubeconfig-content",
        default=os.getenv("FLOWKUBE_KUBECONFIG_CONTENT"),
        help="Inline kubeconfig YAML (with --load-from content)",
    )
    parser.add_argument("--context", help="Kubeconfig context to use")
    parser.add_argument("--namespace", default="default", help="Default namespace")
    parser.add_argument(
        "--continue-on-fail",
        action="store_true",
        help="Record per-item errors instead of stopping at the first one",
    )
    parser.add_argument(
        "--log-level",
        default=config.LOG_LEVEL,
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=config.DEBUG,
        help="Enable debug logging (overrides --log-level to DEBUG)",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    level_name = "DEBUG" if args.debug else args.log_level.upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=config.LOG_FORMAT,
        stream=sys.stderr,
    )
    logger.debug("Starting flowkube %s with level %s", args.operation, level_name)

    from flowkube.engine.runner import OperationRunner
    from flowkube.kube.client import ClusterConfigSource

    try:
        items = load_items(args.params, args.param)
        source = ClusterConfigSource(
            load_from=args.load_from,
            file_path=args.kubeconfig,
            content=args.kubeconfig_content,
            context=args.context,
        )
        runner = OperationRunner(source, namespace=args.namespace)
        result = asyncio.run(runner.run(args.operation, items, args.continue_on_fail))
    except (FlowKubeError, OSError, yaml.YAMLError) as e:
        logger.error("%s failed: %s", args.operation, e)
        return 1

    for out in result.results:
        print(json.dumps(out, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
