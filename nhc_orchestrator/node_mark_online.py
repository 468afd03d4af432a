#!/usr/bin/env python3
"""
node-mark-online: bring a node back online in its resource manager, but
only when the offline note was set by this system.
"""
import sys
import logging
import argparse
from dataclasses import replace

from .health_check_runner import short_hostname
from .node_state import NodeStateReconciler, get_adapter
from .notifier import Notifier
from .orchestrator_config import OrchestratorConfig, ConfigurationError, EXIT_CONFIG_ERROR


def build_parser():
    parser = argparse.ArgumentParser(
        prog="node-mark-online",
        description="Online a node whose offline note was set by the health check.",
    )
    parser.add_argument("hostname", nargs="?", default=None,
                        help="Node to online (default: this host)")
    parser.add_argument("-r", dest="rm", metavar="<rm>", default=None,
                        help="Resource manager: pbs, slurm, lsf, sge (default: $NHC_RM or auto-detect)")
    parser.add_argument("-i", dest="ignore_empty_note", action="store_true",
                        help="Online offline nodes even when no note is set")
    parser.add_argument("-n", dest="dry_run", action="store_true",
                        help="Report the decision without changing anything")
    parser.add_argument("-d", dest="debug", action="store_true", help="Debug logging")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        config = OrchestratorConfig.from_env()
        overrides = {}
        if args.rm:
            overrides["resource_manager"] = args.rm
        if args.ignore_empty_note:
            overrides["ignore_empty_note"] = True
        if args.debug:
            overrides["log_level"] = "DEBUG"
        config = replace(config, **overrides)
        logging.basicConfig(level=config.log_level, format='[%(levelname)s] %(message)s')
        adapter = get_adapter(config.resource_manager, timeout=config.rm_timeout)
    except ConfigurationError as e:
        logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
        logging.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    hostname = args.hostname or short_hostname()
    reconciler = NodeStateReconciler.from_config(
        config, adapter, notifier=Notifier.from_config(config), dry_run=args.dry_run
    )
    result = reconciler.reconcile(hostname)
    logging.debug(f"{hostname}: decision={result.decision.value} rc={result.returncode}")
    return result.returncode


if __name__ == "__main__":
    sys.exit(main())
