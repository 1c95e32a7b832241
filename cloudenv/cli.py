"""Command line entry point: bootstrap, inspect and destroy environments."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

from loguru import logger

from cloudenv.config import resolve_environment
from cloudenv.environ import Environ
from cloudenv.exceptions import CloudEnvError, NotFoundError
from cloudenv.logging import LogConfig, setup_logging, teardown_logging


def _bootstrap(env: Environ, args: argparse.Namespace) -> int:
    info = env.bootstrap()
    print(f"environment {env.name!r} bootstrapped, state server at {', '.join(info.addrs)}")
    return 0


def _status(env: Environ, args: argparse.Namespace) -> int:
    try:
        info = env.state_info()
    except NotFoundError:
        print(f"environment {env.name!r} is not bootstrapped")
        return 1
    print(f"state server: {', '.join(info.addrs)}")
    for inst in env.instances():
        print(f"  {inst.id}\t{inst.state}\t{inst.dns_name or '-'}")
    return 0


def _destroy(env: Environ, args: argparse.Namespace) -> int:
    if not args.yes:
        answer = input(f"Destroy every instance of environment {env.name!r}? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("aborted")
            return 1
    env.destroy()
    print(f"environment {env.name!r} destroyed")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cloudenv", description="Provision cloud environments")
    parser.add_argument("-e", "--environment", default=None, help="Environment name from cloudenv.toml")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Enable logging to stderr at this level",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("bootstrap", help="Start the state server").set_defaults(run=_bootstrap)
    sub.add_parser("status", help="Show state server and instances").set_defaults(run=_status)
    destroy = sub.add_parser("destroy", help="Terminate everything in the environment")
    destroy.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    destroy.set_defaults(run=_destroy)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    handlers = setup_logging(LogConfig(level=args.log_level)) if args.log_level else []
    try:
        env = resolve_environment(args.environment)
        return args.run(env, args)
    except CloudEnvError as e:
        logger.opt(exception=e).debug("Command {cmd} failed", cmd=args.command)
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        teardown_logging(handlers)


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
