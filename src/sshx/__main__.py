"""
CLI interface for sshx.

Usage:
    python -m sshx user@host                    # Interactive shell
    python -m sshx user@host:2222 uptime        # Execute command
    python -m sshx -d /srv/app user@host make   # Command through the login shell
    python -m sshx -i ~/.ssh/id_ed25519 --test user@host
    python -m sshx --events user@host uptime
    python -m sshx --help
"""
from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path

import asyncssh

from sshx import __version__

logger = logging.getLogger("sshx")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the sshx CLI."""
    parser = argparse.ArgumentParser(
        prog="sshx",
        description="SSH client with trust-on-first-use host keys",
        epilog="Example: python -m sshx user@host:2222 'echo hello'",
    )

    parser.add_argument(
        "target",
        metavar="[user@]host[:port]",
        help="Target host (optionally with username and port)",
    )

    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Command to execute on remote host",
    )

    parser.add_argument(
        "-i", "--identity",
        metavar="FILE",
        action="append",
        default=[],
        help="Private key file, tried before agent keys (repeatable)",
    )

    parser.add_argument(
        "--known-hosts",
        metavar="FILE",
        dest="known_hosts",
        help="known_hosts file (default: ~/.ssh/known_hosts)",
    )

    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Connection timeout in seconds (default: 30)",
    )

    parser.add_argument(
        "-d", "--dir",
        metavar="DIR",
        dest="directory",
        help="Remote working directory; runs the command through the login shell",
    )

    parser.add_argument(
        "--test",
        action="store_true",
        help="Try each key in turn, print the first accepted one and exit",
    )

    parser.add_argument(
        "--strict",
        action="store_true",
        help="Refuse to connect if known_hosts cannot be loaded",
    )

    parser.add_argument(
        "--events",
        action="store_true",
        help="Print JSONL events to stderr",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv, -vvv)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only report errors",
    )

    parser.add_argument(
        "-V", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser


def configure_logging(verbose: int, quiet: bool) -> None:
    """Set up stderr logging for the given -v count or -q."""
    if quiet:
        logging.basicConfig(level=logging.ERROR, format=LOG_FORMAT, stream=sys.stderr)
        logging.getLogger("asyncssh").setLevel(logging.ERROR)
        return

    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)

    if verbose >= 3:
        logging.getLogger("asyncssh").setLevel(logging.DEBUG)
    elif verbose >= 2:
        logging.getLogger("asyncssh").setLevel(logging.INFO)
    else:
        logging.getLogger("asyncssh").setLevel(logging.WARNING)


def load_identities(paths: list[str]) -> list[asyncssh.SSHKey]:
    """
    Load -i key files, prompting for a passphrase when one is needed
    and stdin is a terminal.
    """
    from sshx import KeyLoadError, load_key

    keys = []
    for path in paths:
        try:
            keys.append(load_key(path))
        except KeyLoadError as e:
            if e.reason != "passphrase_required" or not sys.stdin.isatty():
                raise
            passphrase = getpass.getpass(f"Enter passphrase for key '{path}': ")
            keys.append(load_key(path, passphrase))
    return keys


async def run_command(args: argparse.Namespace) -> int:
    """
    Connect, run the requested operation and return the exit code.

    Returns:
        Remote exit status, 0 on success, 1 on error, 2 on bad input
    """
    from sshx import (
        CommandRunner,
        ConnectionNegotiator,
        EnvironmentSnapshot,
        EventEmitter,
        EventType,
        HostTrustStore,
        InputError,
        InteractiveShell,
        RemoteExitNonZero,
        SSHError,
        describe_credential,
        parse,
    )

    configure_logging(args.verbose, args.quiet)

    emitter = EventEmitter(stream=sys.stderr if args.events else None)
    exit_code = 0

    try:
        env = EnvironmentSnapshot.capture()
        endpoint = parse(args.target, env)
        keys = load_identities(args.identity)

        known_hosts = Path(args.known_hosts).expanduser() if args.known_hosts else env.known_hosts_path
        negotiator = ConnectionNegotiator(
            env=env,
            trust_store=HostTrustStore.load(known_hosts, emitter=emitter),
            connect_timeout=args.timeout,
            require_trust_store=args.strict,
            emitter=emitter,
        )

        if args.test:
            credential = await negotiator.test(endpoint, *keys)
            print(describe_credential(credential))
            return 0

        async with await negotiator.dial(endpoint, *keys) as conn:
            try:
                if args.command and args.directory is None:
                    await CommandRunner(stdin=sys.stdin, emitter=emitter).exec(
                        conn, " ".join(args.command),
                    )
                else:
                    shell = InteractiveShell(env, emitter=emitter)
                    await shell.run(conn, args.directory or ".", args.command)
            finally:
                emitter.emit(EventType.DISCONNECT, host=endpoint.host, port=endpoint.port)

    except RemoteExitNonZero as e:
        logger.debug("%s", e)
        exit_code = e.status

    except InputError as e:
        print(f"Error: {e}", file=sys.stderr)
        exit_code = 2

    except SSHError as e:
        logger.debug("Error details: %s", e.to_dict())
        print(f"Error: {e}", file=sys.stderr)
        exit_code = 1

    finally:
        emitter.close()

    return exit_code


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    return asyncio.run(run_command(args))


if __name__ == "__main__":
    sys.exit(main())
