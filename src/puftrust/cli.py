# puftrust: trust-on-first-use identity keys over UDP
# Client motes announce themselves with a PUF stand-in key; the server binds
# each endpoint to the first key it sees and periodically challenges peers.
# WARNING: the identity key is an opaque token, not an authenticator.

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from puftrust.util.deps import check_dependencies


def security_self_check(logger) -> bool:
    from puftrust.crypto.identity import KeyGenerator
    from puftrust.protocol.codec import MessageCodec, Message, Verb
    from puftrust.protocol.constants import KEY_LENGTH, MAX_MSG_BYTES
    from puftrust.protocol.errors import EntropySourceUnavailable, MalformedMessage, MessageTooLong
    from puftrust.protocol.registry import Outcome, PeerRegistry

    checks = []

    checks.append(("Python >= 3.9", sys.version_info >= (3, 9)))

    try:
        key = KeyGenerator().generate()
        checks.append(("Entropy source", len(key) == KEY_LENGTH and key.islower()))
    except EntropySourceUnavailable:
        checks.append(("Entropy source", False))

    codec = MessageCodec()
    try:
        codec.decode(b"x" * (MAX_MSG_BYTES + 1))
        checks.append(("Codec length bound", False))
    except MessageTooLong:
        checks.append(("Codec length bound", True))

    try:
        codec.decode(b"")
        checks.append(("Codec rejects empty input", False))
    except MalformedMessage:
        checks.append(("Codec rejects empty input", True))

    msg = codec.decode(b"abcdefghij validate ")
    checks.append(("Codec validate verb", msg.verb is Verb.VALIDATE and codec.decode(codec.encode(msg)) == msg))
    checks.append(("Codec round-trip", codec.decode(codec.encode(Message("k", "hello", "7"))) == Message("k", "hello", "7")))

    registry = PeerRegistry(capacity=1, audit=lambda event, **fields: None)
    checks.append(("Registry first use", registry.verify_or_register(("::1", 1), "a") is Outcome.REGISTERED))
    checks.append(("Registry mismatch", registry.verify_or_register(("::1", 1), "b") is Outcome.MISMATCH))
    checks.append(("Registry capacity", registry.verify_or_register(("::1", 2), "a") is Outcome.TABLE_FULL))

    all_ok = all(ok for _, ok in checks)
    for name, ok in checks:
        (logger.info if ok else logger.error)("security_check", check=name, status=("OK" if ok else "FAILED"))

    if not all_ok:
        raise RuntimeError("Security self-check failed")
    logger.info("security_self_check_passed")
    return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="puftrust trust-on-first-use validation peer")
    subparsers = parser.add_subparsers(dest="command", required=True)

    server_parser = subparsers.add_parser("server", help="Run the validating server (sync mote)")
    server_parser.add_argument("--host", default="0.0.0.0")
    server_parser.add_argument("--port", type=int, default=None)
    server_parser.add_argument("--capacity", type=int, default=None)
    server_parser.add_argument("--no-reply", action="store_true", help="Do not echo replies to senders")
    server_parser.add_argument("--challenge-initial", type=float, default=None,
                               help="Upper bound (s) of the first randomized challenge wait")
    server_parser.add_argument("--challenge-repeat", type=float, default=None,
                               help="Upper bound (s) of subsequent randomized challenge waits")

    client_parser = subparsers.add_parser("client", help="Run an announcing client mote")
    client_parser.add_argument("--server-host", required=True)
    client_parser.add_argument("--server-port", type=int, default=None)
    client_parser.add_argument("--host", default="0.0.0.0")
    client_parser.add_argument("--port", type=int, default=None)
    client_parser.add_argument("--capacity", type=int, default=None)
    client_parser.add_argument("--interval", type=float, default=None, help="Base hello interval (s)")
    client_parser.add_argument("--jitter", type=float, default=None, help="Hello jitter (s)")

    subparsers.add_parser("gen-key", help="Generate an identity key")
    subparsers.add_parser("check", help="Run security self-check")
    return parser


def config_from_args(args: argparse.Namespace):
    from puftrust.config import NodeConfig

    fields = {"role": args.command, "host": args.host, "port": args.port, "capacity": args.capacity}
    if args.command == "server":
        fields.update(
            reply_enabled=not args.no_reply,
            challenge_initial_max_s=args.challenge_initial,
            challenge_repeat_max_s=args.challenge_repeat,
        )
    else:
        fields.update(
            server_host=args.server_host,
            server_port=args.server_port,
            send_interval_s=args.interval,
            send_jitter_s=args.jitter,
        )
    return NodeConfig(**{k: v for k, v in fields.items() if v is not None})


def main(argv=None):
    ok, missing = check_dependencies()
    if not ok:
        print("ERROR: Missing dependencies:")
        for dep in missing:
            print(f"  - {dep}")
        print("\nInstall with:")
        print("pip install " + " ".join(f'"{dep}"' for dep in missing))
        sys.exit(1)

    import structlog
    from pydantic import ValidationError
    from puftrust.crypto.identity import KeyGenerator
    from puftrust.protocol.errors import EntropySourceUnavailable, ProtocolError
    from puftrust.peer.node import PeerNode

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ]
    )
    logger = structlog.get_logger()

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "check":
        try:
            security_self_check(logger)
        except RuntimeError as e:
            print(f"Self-check failed: {e}")
            sys.exit(1)
        print("✓ Security self-check passed")
        return

    if args.command == "gen-key":
        try:
            print(KeyGenerator().generate())
        except EntropySourceUnavailable as e:
            logger.error("entropy_unavailable", error=str(e))
            sys.exit(1)
        return

    try:
        config = config_from_args(args)
    except ValidationError as e:
        parser.error(str(e))

    try:
        security_self_check(logger)
        node = PeerNode(config)
    except (RuntimeError, EntropySourceUnavailable) as e:
        logger.error("startup_failed", error=str(e))
        sys.exit(1)

    print(f"Starting puftrust {config.role} on {config.host}:{config.bind_port} with key {node.key}")
    print("Press Ctrl+C to exit")

    try:
        asyncio.run(node.run())
    except KeyboardInterrupt:
        logger.info("node_shutdown", reason="keyboard_interrupt")
        print("\nShutting down...")
        print(json.dumps(node.controller.status(), indent=2))
    except ProtocolError as e:
        logger.error("protocol_error", error=str(e))
        print(f"Protocol error: {e}")
        sys.exit(1)
    except OSError as e:
        logger.error("socket_error", error=str(e))
        print(f"Socket error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
