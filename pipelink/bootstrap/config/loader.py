import argparse
import os
from functools import lru_cache
from pathlib import Path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pipelink",
        description=(
            "Local inter-process messaging over named endpoints.\n\n"
            "A server publishes an endpoint name; any number of clients connect\n"
            "to it by that name and exchange text messages with the server."
        ),
        formatter_class=argparse.RawTextHelpFormatter
    )

    parser.add_argument(
        "-c", "--config",
        type=str,
        help="Path to a pipelink configuration file"
    )

    parser.add_argument(
        "-l", "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help=(
            "Logging verbosity.\n"
            "DEBUG    → channel lifecycle transitions, useful for tracing.\n"
            "INFO     → connections and disconnections (default).\n"
            "WARNING  → refused connections and malformed frames.\n"
            "ERROR    → failed sends and teardown errors.\n"
            "CRITICAL → only critical failures."
        ),
    )

    commands = parser.add_subparsers(dest="command")
    commands.add_parser(
        "serve",
        help="Publish the configured endpoint and relay messages between clients (default)"
    )

    connect = commands.add_parser(
        "connect",
        help="Connect to an endpoint, send stdin lines and print received messages"
    )
    connect.add_argument(
        "-n", "--name",
        type=str,
        help="Endpoint name; overrides the configuration file"
    )
    connect.add_argument(
        "--socket-dir",
        type=Path,
        help="Directory holding the endpoint socket"
    )
    connect.add_argument(
        "-t", "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for the endpoint (default: 300)"
    )

    return parser


@lru_cache
def get_cli_args() -> argparse.Namespace:
    args = build_parser().parse_args()
    if args.command is None:
        args.command = "serve"
    return args


def find_configfile() -> Path | None:
    args = get_cli_args()

    # Priority: CLI > ENV > default file in current working directory
    raw = args.config or os.getenv("PIPELINKCONFIG")

    if raw is None:
        file = Path.cwd() / "pipelink.yaml"
        return file if file.is_file() else None

    return Path(raw)


@lru_cache
def get_configfile() -> Path:
    file = find_configfile()

    if file is None or not file.is_file():
        raise SystemExit(
            f"[config] Configuration file not found: '{file or Path.cwd() / 'pipelink.yaml'}'.\n"
            "  - Use --config <file.yaml>\n"
            "  - Or set the PIPELINKCONFIG environment variable\n"
            "  - Or place a 'pipelink.yaml' file in the current working directory."
        )

    return file
