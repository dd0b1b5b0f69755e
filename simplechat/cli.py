from __future__ import annotations

import argparse
import sys
from dataclasses import replace

from .config import ClientRuntimeConfig, ServerRuntimeConfig, load_config
from .console import ClientConsole, ServerConsole
from .logging_config import configure_logging
from .paths import default_config_path


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (optional; ignored if missing)",
    )
    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )


def _build_server_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="simplechat-server", description="Run a simplechat server"
    )
    p.add_argument(
        "port",
        nargs="?",
        type=int,
        default=None,
        help="Port to listen on (default: 5555)",
    )
    p.add_argument("--host", default=None, help="Address to bind (default: all)")
    _add_common_args(p)
    return p


def _build_client_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="simplechat-client", description="Connect to a simplechat server"
    )
    p.add_argument("login_id", help="Login ID to use on the server")
    p.add_argument(
        "host", nargs="?", default=None, help="Server host (default: localhost)"
    )
    p.add_argument(
        "port", nargs="?", type=int, default=None, help="Server port (default: 5555)"
    )
    _add_common_args(p)
    return p


def _apply_log_overrides(cfg, args):
    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)
    return cfg


def load_server_config(argv: list[str] | None = None) -> ServerRuntimeConfig:
    args = _build_server_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    cfg = load_config(ServerRuntimeConfig(), args.config, section="server")

    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.host is not None:
        cfg = replace(cfg, host=args.host)

    return _apply_log_overrides(cfg, args)


def load_client_config(argv: list[str] | None = None) -> tuple[str, ClientRuntimeConfig]:
    args = _build_client_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    cfg = load_config(ClientRuntimeConfig(), args.config, section="client")

    if args.host is not None:
        cfg = replace(cfg, host=args.host)
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))

    return args.login_id, _apply_log_overrides(cfg, args)


def server_main(argv: list[str] | None = None) -> None:
    cfg = load_server_config(argv)
    configure_logging(cfg)

    console = ServerConsole(cfg)
    raise SystemExit(console.run())


def client_main(argv: list[str] | None = None) -> None:
    login_id, cfg = load_client_config(argv)
    configure_logging(cfg)

    try:
        console = ClientConsole(login_id, cfg)
    except ValueError:
        print("ERROR - No login ID specified.  Connection aborted.", file=sys.stderr)
        raise SystemExit(1)
    except OSError:
        print("ERROR - Can't setup connection! Terminating client.", file=sys.stderr)
        raise SystemExit(1)

    raise SystemExit(console.run())


if __name__ == "__main__":
    server_main()
