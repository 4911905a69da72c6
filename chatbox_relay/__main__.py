# __main__.py  (stdin -> VRChat chatbox)
#   python -m chatbox_relay --config relay.json
#   each line is sent as final text; a line starting with "~" is interim text
from __future__ import annotations

import argparse
import logging
import sys

from .config import RelayConfig
from .errors import RelayError
from .relay_engine import RelayEngine

INTERIM_PREFIX = "~"


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="chatbox_relay", description="Relay text lines to the VRChat chatbox over OSC.")
    p.add_argument("--config", default=None, help="JSON config file (defaults if missing)")
    p.add_argument("--host", default=None, help="override osc_host")
    p.add_argument("--port", type=int, default=None, help="override osc_port")
    p.add_argument("--listen-port", type=int, default=None, help="override listen_port")
    p.add_argument("--no-mic-sync", action="store_true", help="do not gate on VRChat mic mute")
    p.add_argument("--realtime", action="store_true", help="forward '~' interim lines")
    p.add_argument("--log-level", default="INFO")
    return p


def load_config(args: argparse.Namespace) -> RelayConfig:
    config = RelayConfig.load(args.config) if args.config else RelayConfig()
    patch = {}
    if args.host is not None:
        patch["osc_host"] = args.host
    if args.port is not None:
        patch["osc_port"] = args.port
    if args.listen_port is not None:
        patch["listen_port"] = args.listen_port
    if args.no_mic_sync:
        patch["mic_sync_enabled"] = False
    if args.realtime:
        patch["realtime_enabled"] = True
    return config.merge_patch(patch) if patch else config


def relay_lines(engine: RelayEngine, lines) -> None:
    for raw in lines:
        line = raw.rstrip("\n")
        if line.startswith(INTERIM_PREFIX):
            engine.submit_interim(line[len(INTERIM_PREFIX):])
        else:
            engine.submit_final(line)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args)
    except RelayError as exc:
        print(f"invalid configuration: {exc}", file=sys.stderr)
        return 2

    engine = RelayEngine(config)
    try:
        engine.start()
    except OSError as exc:
        print(f"cannot start relay: {exc}", file=sys.stderr)
        engine.shutdown()
        return 1

    try:
        relay_lines(engine, sys.stdin)
        engine.queue.wait_idle()    # let queued segments finish on EOF
    except KeyboardInterrupt:
        print("Stopping...")
    finally:
        engine.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
