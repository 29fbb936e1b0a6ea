"""Command-line entry point.

Example:
    cloud-proxy --count 10 --regions nyc1,sfo3 --ports 1-65535 \\
        --cmd 'nmap -p {{ports}} -oX - scanme.example.com'
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from dataclasses import fields
from typing import Any

from loguru import logger

from cloudproxy import __version__, constants
from cloudproxy.config import RunConfig, load_defaults, resolve_token, split_packages
from cloudproxy.credentials import Credential, load_credential
from cloudproxy.exceptions import CloudProxyError, ConfigurationError
from cloudproxy.logging import LogConfig, setup_logging, teardown_logging
from cloudproxy.orchestrator import FleetOrchestrator
from cloudproxy.providers.digitalocean import DigitalOceanProvider
from cloudproxy.transport import SSHTransport

EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def build_parser(defaults: dict[str, Any] | None = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cloud-proxy",
        description=(
            "Create DigitalOcean droplets, run a templated command on each over SSH "
            "and destroy them on CTRL-C."
        ),
    )
    parser.add_argument("-v", "--version", action="version", version=__version__)

    fleet = parser.add_argument_group("fleet")
    fleet.add_argument("--count", type=int, help="Amount of droplets to deploy")
    fleet.add_argument("--name", dest="name_prefix", help="Droplet name prefix")
    fleet.add_argument(
        "--regions",
        help="Comma separated list of regions to deploy droplets to, defaults to all.",
    )
    fleet.add_argument("--size", help="Droplet size slug")
    fleet.add_argument("--image", help="Droplet image slug")
    fleet.add_argument(
        "--force",
        action="store_true",
        help=f"Bypass the protection against deploying more than {constants.SAFETY_CAP} droplets",
    )
    fleet.add_argument("--token", help="DigitalOcean API token; or use the DOTOKEN env var")

    run = parser.add_argument_group("command")
    run.add_argument(
        "--cmd",
        dest="command",
        help="Templated command to run on droplets. Variables: "
        "{{index}}, {{address}} (or {{ip}}), {{name}}, {{ports}}",
    )
    run.add_argument(
        "--pkg",
        dest="packages",
        type=split_packages,
        help="Packages to install, separated by comma ('' to skip)",
    )
    run.add_argument(
        "--ports",
        help="nmap compliant port list, divided into one contiguous bucket per droplet "
        "and exposed to the command as {{ports}}",
    )
    run.add_argument(
        "--out",
        dest="output",
        help="Output file template; {{index}} and {{name}} are replaced per droplet",
    )
    run.add_argument(
        "--stdin",
        dest="forward_stdin",
        action="store_true",
        help="Forward keystrokes to every remote command (allocates a PTY)",
    )
    run.add_argument(
        "--destroy",
        dest="keep_alive",
        action="store_false",
        help="Destroy droplets as soon as every command has finished",
    )

    ssh = parser.add_argument_group("ssh")
    ssh.add_argument("--key-location", help="SSH private key location")
    ssh.add_argument("--user", help="Remote login user")
    ssh.add_argument("--poll-interval", type=float, help="Seconds between address polls")
    ssh.add_argument("--connect-backoff", type=float, help="Seconds between SSH attempts")
    ssh.add_argument("--connect-timeout", type=float, help="Timeout of one SSH attempt")

    proxy = parser.add_argument_group("proxy")
    proxy.add_argument(
        "--proxy",
        action="store_true",
        help="Open a local SOCKS5 proxy through every droplet instead of running a command",
    )
    proxy.add_argument("--proxy-start-port", type=int, help="First local SOCKS port")

    logging = parser.add_argument_group("logging")
    logging.add_argument(
        "--log-level",
        default="INFO",
        choices=["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR"],
    )
    logging.add_argument("--log-file", help="Also write a DEBUG log to this file")

    base = {f.name: f.default for f in fields(RunConfig)}
    base.update(defaults or {})
    parser.set_defaults(**base)
    return parser


def config_from_args(args: argparse.Namespace) -> RunConfig:
    names = {f.name for f in fields(RunConfig)}
    return RunConfig(**{k: v for k, v in vars(args).items() if k in names})


async def _run(config: RunConfig, token: str, credential: Credential) -> int:
    transport = SSHTransport(
        user=config.user,
        connect_timeout=config.connect_timeout,
        pty=config.forward_stdin,
    )
    async with DigitalOceanProvider(token=token, size=config.size, image=config.image) as provider:
        orchestrator = FleetOrchestrator(config, provider, transport, credential)
        return await orchestrator.run()


def main(argv: Sequence[str] | None = None) -> int:
    setup_logging()
    try:
        defaults = load_defaults()
    except ConfigurationError as e:
        logger.error(str(e))
        return EXIT_CONFIG

    args = build_parser(defaults).parse_args(argv)
    handler_ids = setup_logging(LogConfig(level=args.log_level, file=args.log_file))

    try:
        config = config_from_args(args)
        token = resolve_token(config.token)
        config.validate()
        credential = load_credential(config.key_location)
        return asyncio.run(_run(config, token, credential))
    except ConfigurationError as e:
        logger.error(str(e))
        return EXIT_CONFIG
    except CloudProxyError as e:
        logger.error(str(e))
        return EXIT_FAILED
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return EXIT_INTERRUPTED
    finally:
        teardown_logging(handler_ids)


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
