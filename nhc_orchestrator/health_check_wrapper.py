#!/usr/bin/env python3
"""
nhc-wrapper: run a health-check program, remember its output, and only
notify when that output changes (new errors, different errors, or errors
cleared). Optionally loops on wall-clock aligned intervals.
"""
import os
import sys
import shlex
import logging
import argparse
from dataclasses import replace

from .health_check_runner import HealthCheckRunner, Classification, short_hostname
from .notifier import Notifier, notify_outcome
from .orchestrator_config import (
    OrchestratorConfig,
    ConfigurationError,
    EXIT_CONFIG_ERROR,
    EXIT_STATE_DIR_ERROR,
)
from .result_store import ResultStore, StateDirError
from .scheduler_loop import SchedulerLoop, SignalGuard
from .timespec import parse_timespec, parse_loop_spec, split_loop_spec, DEFAULT_FUDGE, FUDGE_UNIT


def build_parser():
    parser = argparse.ArgumentParser(
        prog="nhc-wrapper",
        description="Run a health check and report only when its output changes.",
    )
    parser.add_argument("-A", dest="subject_args", metavar="<args>", default=None,
                        help="Arguments passed to the subject program (shell-quoted string)")
    parser.add_argument("-D", dest="state_dir", metavar="<dir>", default=None,
                        help="State directory (default: <tmp>/nhc-wrapper-<euid>)")
    parser.add_argument("-L", dest="loop", metavar="<timespec>", default=None,
                        help="Loop every <timespec>; trailing c/r/t flags clear screen, print ruler, "
                             "print timestamp (an f fudge only applies to -X)")
    parser.add_argument("-M", dest="destination", metavar="<dest>", default=None,
                        help="Notification destination (channel or e-mail address)")
    parser.add_argument("-N", dest="name", metavar="<name>", default=None,
                        help="Name used for state files and messages (default: program basename)")
    parser.add_argument("-P", dest="subject", metavar="<program>", default=None,
                        help="Subject program to run (default: nhc)")
    parser.add_argument("-X", dest="expire", metavar="<timespec>", default=None,
                        help="Expire the saved result after <timespec> (e.g. 1d, 12h10f)")
    display = parser.add_mutually_exclusive_group()
    display.add_argument("-a", dest="display", action="store_const", const="always",
                         help="Print the subject output after every run")
    display.add_argument("-q", dest="display", action="store_const", const="never",
                         help="Never print the subject output")
    parser.add_argument("-d", dest="debug", action="store_true", help="Debug logging")
    parser.add_argument("extra_args", nargs=argparse.REMAINDER,
                        help="Arguments for the subject program (after --)")
    parser.set_defaults(display="changed")
    return parser


def apply_overrides(config: OrchestratorConfig, args) -> OrchestratorConfig:
    overrides = {}
    if args.state_dir:
        overrides["state_dir"] = args.state_dir
    if args.destination is not None:
        overrides["notify_destination"] = args.destination
    if args.subject:
        overrides["subject"] = args.subject
    if args.expire is not None:
        overrides["expire_spec"] = args.expire
    if args.debug:
        overrides["log_level"] = "DEBUG"
    return replace(config, **overrides) if overrides else config


def subject_arguments(args) -> list:
    extra = list(args.extra_args)
    if extra and extra[0] == "--":
        extra = extra[1:]
    if args.subject_args:
        return shlex.split(args.subject_args) + extra
    return extra


def display_output(outcome, mode, out=None):
    out = out or sys.stdout
    if mode == "never" or not outcome.output:
        return
    if mode == "always" or outcome.classification is Classification.CHANGED:
        out.write(outcome.output.decode("utf-8", errors="replace"))
        out.flush()


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        config = apply_overrides(OrchestratorConfig.from_env(), args)
    except ConfigurationError as e:
        logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
        logging.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    logging.basicConfig(level=config.log_level, format='[%(levelname)s] %(message)s')
    logging.debug(f"Configuration: {config.as_dict()}")

    name = args.name or os.path.basename(config.subject)
    expire_after, fudge = parse_timespec(config.expire_spec) if config.expire_spec else (0, DEFAULT_FUDGE)
    notifier = Notifier.from_config(config)
    host = short_hostname()

    try:
        with ResultStore(config.state_dir, name) as store:
            runner = HealthCheckRunner(store, config.subject, subject_arguments(args),
                                       expire_after=expire_after, fudge=fudge)

            def tick():
                outcome = runner.run_and_classify()
                display_output(outcome, args.display)
                notify_outcome(notifier, outcome, name, host)
                return outcome.returncode

            if args.loop is None:
                with SignalGuard() as guard:
                    rc = tick()
                    guard.check()
                return rc

            interval, _, flags = parse_loop_spec(args.loop)
            if FUDGE_UNIT in split_loop_spec(args.loop)[0].lower():
                logging.warning(f"Ignoring fudge in loop timespec {args.loop!r}; it only applies to -X")
            SchedulerLoop(interval, flags).run(tick)
    except StateDirError as e:
        logging.error(f"Refusing to run: {e}")
        return EXIT_STATE_DIR_ERROR
    return 0


if __name__ == "__main__":
    sys.exit(main())
