import sys
import os
import yaml
import argparse
from loguru import logger

from .orchestrator import Bridge
from .core.envelope import from_hex
from .core.outcome import ConfigurationError
from .core.state import BridgeState
from .destinations.mq import MQDestination
from .destinations.pubsub import PubSubDestination
from .sources.mq import MQSource
from .sources.pubsub import PubSubSource
from .mq.interfaces import ObjectKind

PUBSUB_TO_QUEUE = "pubsub-to-queue"
PUBSUB_TO_TOPIC = "pubsub-to-topic"
QUEUE_TO_PUBSUB = "queue-to-pubsub"
TOPIC_TO_PUBSUB = "topic-to-pubsub"

PUBSUB_SOURCED = {PUBSUB_TO_QUEUE: ObjectKind.QUEUE, PUBSUB_TO_TOPIC: ObjectKind.TOPIC}
MQ_SOURCED = {QUEUE_TO_PUBSUB: ObjectKind.QUEUE, TOPIC_TO_PUBSUB: ObjectKind.TOPIC}


def _mq_options_parser() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    group = parent.add_argument_group("IBM MQ connection")
    group.add_argument("--connection", metavar="CONN", help="Client connection name, e.g. host(1414). Requires --channel.")
    group.add_argument("--channel", help="Server connection channel. Requires --connection.")
    group.add_argument("--user", help="MQ user id")
    group.add_argument(
        "--password",
        default=os.environ.get("MQ_PASSWORD"),
        help="MQ password (default: $MQ_PASSWORD)",
    )
    group.add_argument("--cipher-spec", help="TLS cipher spec for the client channel")
    group.add_argument("--key-repository", metavar="STEM", help="Key repository stem (.kdb/.sth)")
    return parent


def _pubsub_source_options(parser: argparse.ArgumentParser):
    parser.add_argument("--timeout", type=float, metavar="SECONDS", help="Stop listening after this many seconds")
    parser.add_argument("--max-in-flight", type=int, metavar="N", help="Messages processed concurrently (default: 1)")


def _mq_source_options(parser: argparse.ArgumentParser):
    parser.add_argument("--wait-interval", type=float, metavar="SECONDS", help="Blocking get wait interval (default: 3)")
    parser.add_argument(
        "--keep-polling",
        action="store_true",
        help="Keep polling when no message is available instead of stopping",
    )


def create_parser():
    parser = argparse.ArgumentParser(
        prog="mqbridge",
        description="Relays messages between Google Cloud Pub/Sub and IBM MQ.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        metavar="FILE",
        help="YAML config file",
    )
    parser.add_argument("--project", help="GCP project id (default: config, $GOOGLE_CLOUD_PROJECT, or ADC)")
    parser.add_argument("--log-level", help="Log level (default: config or INFO)")

    mq_options = _mq_options_parser()
    commands = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    p = commands.add_parser(PUBSUB_TO_QUEUE, parents=[mq_options], help="Pub/Sub subscription to MQ queue")
    p.add_argument("subscription")
    p.add_argument("queue")
    p.add_argument("queue_manager")
    p.add_argument("--raw", action="store_true", help="Put the payload as-is, without the googleID envelope")
    _pubsub_source_options(p)

    p = commands.add_parser(PUBSUB_TO_TOPIC, parents=[mq_options], help="Pub/Sub subscription to MQ topic")
    p.add_argument("subscription")
    p.add_argument("topic_string")
    p.add_argument("queue_manager")
    _pubsub_source_options(p)

    p = commands.add_parser(QUEUE_TO_PUBSUB, parents=[mq_options], help="MQ queue to Pub/Sub topic")
    p.add_argument("topic")
    p.add_argument("queue")
    p.add_argument("queue_manager")
    p.add_argument("--msg-id", metavar="HEX", help="Only get the message with this hex MsgId")
    _mq_source_options(p)

    p = commands.add_parser(TOPIC_TO_PUBSUB, parents=[mq_options], help="MQ topic to Pub/Sub topic")
    p.add_argument("topic")
    p.add_argument("topic_string")
    p.add_argument("queue_manager")
    _mq_source_options(p)

    return parser


def validate_args(parser: argparse.ArgumentParser, args: argparse.Namespace):
    """Rejects inconsistent option combinations before anything is connected."""
    if bool(args.connection) != bool(args.channel):
        parser.error("--connection and --channel must be given together")
    if (args.cipher_spec or args.key_repository) and not args.connection:
        parser.error("--cipher-spec and --key-repository require client mode (--connection/--channel)")
    if args.user and not args.password:
        parser.error("--user requires --password (or $MQ_PASSWORD)")
    if getattr(args, "msg_id", None):
        try:
            from_hex(args.msg_id)
        except ValueError:
            parser.error(f"--msg-id is not a hex string: {args.msg_id}")


def load_config(path: str | None) -> dict:
    if path is None:
        return {}

    config_path = os.path.join(os.getcwd(), path)

    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f) or {}
            logger.info("Config loaded succesfully.")
            return config
    except FileNotFoundError:
        logger.critical(f"Config file not found in '{config_path}'")
        sys.exit(1)
    except yaml.YAMLError as e:
        logger.critical(f"Syntax error in YAML file '{config_path}': {e}")
        sys.exit(1)


def configure_logging(logging_config: dict, level_override: str | None = None):
    log_level = (level_override or logging_config.get("level", "INFO")).upper()
    logger.remove()
    logger.add(sys.stderr, level=log_level, colorize=True)

    log_file = logging_config.get("file")
    if log_file:
        logger.add(
            log_file,
            level=log_level,
            rotation=logging_config.get("rotation", "10 MB"),
            retention=logging_config.get("retention"),
        )
    logger.info(f"Logger level set to: {log_level}")


def resolve_project(args: argparse.Namespace, config: dict) -> str | None:
    project = args.project or config.get("gcp", {}).get("project") or os.environ.get("GOOGLE_CLOUD_PROJECT")
    if project:
        return project

    import google.auth
    from google.auth import exceptions as auth_exceptions

    try:
        _, project = google.auth.default()
    except auth_exceptions.DefaultCredentialsError as e:
        logger.warning(f"No GCP project could be determined from the environment: {e}")
        return None
    return project


def mq_client_factory():
    """Returns the pymqi-backed client class; pymqi needs the IBM MQ client libraries."""
    try:
        from .mq.pymqi_client import PymqiClient
    except ImportError as e:
        raise ConfigurationError(
            f"pymqi is not available ({e}). Install the IBM MQ client and 'mq-pubsub-bridge[mq]'."
        ) from e
    return PymqiClient


def build_mq_config(args: argparse.Namespace, config: dict, target: str, kind: ObjectKind) -> dict:
    mq_config = dict(config.get("mq", {}))
    mq_config.update(
        {
            "queue_manager": args.queue_manager,
            "target": target,
            "kind": kind.value,
            "publishing": config.get("publishing", {}),
        }
    )
    cli_values = {
        "connection_name": args.connection,
        "channel": args.channel,
        "user": args.user,
        "password": args.password,
        "cipher_spec": args.cipher_spec,
        "key_repository": args.key_repository,
    }
    mq_config.update({key: value for key, value in cli_values.items() if value is not None})
    return mq_config


def build_bridge(args: argparse.Namespace, config: dict, client_factory=None) -> Bridge:
    """Builds the source, destination and bridge for the selected command."""
    subscriber_config = config.get("subscriber", {})
    publishing_config = config.get("publishing", {})
    state = BridgeState()

    if args.command in PUBSUB_SOURCED:
        kind = PUBSUB_SOURCED[args.command]
        target = args.queue if kind is ObjectKind.QUEUE else args.topic_string
        mq_config = build_mq_config(args, config, target, kind)
        mq_config["envelope"] = not getattr(args, "raw", False)

        project = None if args.subscription.startswith("projects/") else resolve_project(args, config)
        max_in_flight = args.max_in_flight or subscriber_config.get("max_in_flight", 1)
        source = PubSubSource(
            {
                "subscription": args.subscription,
                "project": project,
                "max_in_flight": max_in_flight,
                "shutdown_timeout_seconds": subscriber_config.get("shutdown_timeout_seconds", 30),
            }
        )
        destination = MQDestination(mq_config, client_factory or mq_client_factory(), state)
        listen_timeout = args.timeout if args.timeout is not None else subscriber_config.get("listen_timeout_seconds")
        heartbeat_interval = subscriber_config.get("heartbeat_interval_seconds", 5)
        return Bridge(source, destination, heartbeat_interval, listen_timeout, state)

    kind = MQ_SOURCED[args.command]
    target = args.queue if kind is ObjectKind.QUEUE else args.topic_string
    mq_config = build_mq_config(args, config, target, kind)
    if args.wait_interval is not None:
        mq_config["wait_interval_seconds"] = args.wait_interval
    if args.keep_polling:
        mq_config["stop_when_empty"] = False
    if getattr(args, "msg_id", None):
        mq_config["match_msg_id"] = args.msg_id

    project = None if args.topic.startswith("projects/") else resolve_project(args, config)
    source = MQSource(mq_config, client_factory or mq_client_factory())
    destination = PubSubDestination(
        {"topic": args.topic, "project": project, "publishing": publishing_config}, state
    )
    return Bridge(source, destination, heartbeat_interval=source.wait_interval + 2, state=state)


def main(argv=None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)
    validate_args(parser, args)

    config = load_config(args.config)
    configure_logging(config.get("logging", {}), args.log_level)

    try:
        bridge = build_bridge(args, config)
    except ConfigurationError as e:
        logger.critical(str(e))
        return 1

    return bridge.run()


if __name__ == "__main__":
    sys.exit(main())
