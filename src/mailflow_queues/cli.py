"""
Module: cli.py
Description: Operator command line for queue administration.

Usage:
    mailflow-queues topology
    mailflow-queues list
    mailflow-queues messages mailflow-dlq-dev --limit 20 --search invoice
    mailflow-queues delete mailflow-dlq-dev RECEIPT_HANDLE
    mailflow-queues redrive mailflow-dlq-dev RECEIPT_HANDLE --body '{"id": 1}'
    mailflow-queues redrive-all mailflow-dlq-dev --limit 50
    mailflow-queues purge mailflow-dlq-dev
    mailflow-queues watch --enable-polling
    mailflow-queues provision

Destructive commands ask for confirmation unless --yes is given. Purge
always requires typing the queue name and has no --yes.
"""

import argparse
import asyncio
import json
import signal
import sys
from dataclasses import dataclass
from typing import List, Optional

import boto3

from mailflow_queues.config.settings import Settings, settings as default_settings
from mailflow_queues.errors import PartialBatchFailure, QueueAdminError
from mailflow_queues.lifecycle.batch import BatchMutationCoordinator
from mailflow_queues.lifecycle.inspector import QueueInspector
from mailflow_queues.lifecycle.peeker import MessagePeeker
from mailflow_queues.lifecycle.purge import PurgeGuard
from mailflow_queues.lifecycle.redrive import RedriveEngine
from mailflow_queues.lifecycle.scheduler import RefreshScheduler
from mailflow_queues.models.batch import BatchResult, RedriveOperation
from mailflow_queues.models.message import MessagePage, QueueMessage
from mailflow_queues.models.queue import QueueInfo, QueueTopology, build_topology
from mailflow_queues.sqs_queue.provision import provision_queues
from mailflow_queues.sqs_queue.sqs import SQSBroker
from mailflow_queues.utils.logger import get_logger
from mailflow_queues.utils.metrics import MetricsClient

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


@dataclass
class Services:
    """Lifecycle services wired from settings."""

    settings: Settings
    topology: QueueTopology
    broker: SQSBroker
    inspector: QueueInspector
    peeker: MessagePeeker
    engine: RedriveEngine
    coordinator: BatchMutationCoordinator
    purge_guard: PurgeGuard


def build_services(config: Settings) -> Services:
    topology = build_topology(config.stage, config.app_name_list, config)
    broker = SQSBroker(
        region_name=config.aws_region,
        endpoint_url=config.aws_endpoint_url,
        call_timeout=config.broker_call_timeout
    )
    metrics_client = None
    if config.metrics_enabled:
        metrics_client = MetricsClient(namespace=config.metrics_namespace, region_name=config.aws_region)

    inspector = QueueInspector(topology, broker, metrics_client)
    engine = RedriveEngine(topology, broker, metrics_client=metrics_client)
    return Services(
        settings=config,
        topology=topology,
        broker=broker,
        inspector=inspector,
        peeker=MessagePeeker(inspector, broker, config),
        engine=engine,
        coordinator=BatchMutationCoordinator(
            engine,
            max_concurrency=config.batch_max_concurrency,
            max_items=config.batch_max_items,
            metrics_client=metrics_client
        ),
        purge_guard=PurgeGuard(broker, metrics_client),
    )


def confirm(prompt: str, assume_yes: bool = False) -> bool:
    """Ask a y/N question; --yes answers it."""
    if assume_yes:
        return True
    answer = input(f"{prompt} [y/N]: ")
    return answer.strip().lower() in ("y", "yes")


def format_queue_table(queues: List[QueueInfo]) -> str:
    lines = [f"{'QUEUE':<40} {'KIND':<12} {'VISIBLE':>8} {'IN FLIGHT':>10} {'OLDEST':>8}  DLQ"]
    for queue in queues:
        visible = str(queue.message_count) if queue.metrics_available else "?"
        in_flight = str(queue.messages_in_flight) if queue.metrics_available else "?"
        oldest = "-" if queue.oldest_message_age_seconds is None else f"{queue.oldest_message_age_seconds}s"
        dlq = queue.redrive_policy.target_dead_letter_queue if queue.redrive_policy else ""
        lines.append(
            f"{queue.name:<40} {queue.kind.value:<12} {visible:>8} {in_flight:>10} {oldest:>8}  {dlq}"
        )
    return "\n".join(lines)


def format_message_page(page: MessagePage) -> str:
    lines = [
        f"{page.queue_name}: showing {len(page.messages)} of ~{page.total_count} visible messages"
        + (f" ({page.duplicates_dropped} duplicate deliveries dropped)" if page.duplicates_dropped else "")
    ]
    for message in page.messages:
        count = message.attributes.approximate_receive_count
        lines.append(
            f"- {message.message_id}  receives={count if count is not None else '?'}"
            f" [{message.receive_count_severity.value}]"
        )
        lines.append(f"    {message.preview}")
        lines.append(f"    handle: {message.receipt_handle}")
    return "\n".join(lines)


def format_batch_result(result: BatchResult) -> str:
    lines = [
        f"{result.operation} on {result.queue_name}: {result.succeeded} succeeded, "
        f"{result.failed} failed, {result.skipped} skipped of {result.total}"
        + (" (cancelled)" if result.cancelled else "")
    ]
    for outcome in result.failed_items:
        kind = outcome.failure_kind.value if outcome.failure_kind else "unknown"
        lines.append(f"  FAILED {outcome.message_id} [{kind}]: {outcome.message}")
    for outcome in result.outcomes:
        if outcome.delete_error is not None:
            lines.append(
                f"  DUPLICATED {outcome.message_id}: published but not deleted ({outcome.delete_error.value})"
            )
    return "\n".join(lines)


def _print_json(model) -> None:
    print(model.model_dump_json(by_alias=True, indent=2))


async def cmd_topology(services: Services, args: argparse.Namespace) -> int:
    if args.json:
        _print_json(services.topology)
        return EXIT_OK
    print(f"Environment: {services.topology.environment}")
    for queue in services.topology.queues:
        wiring = ""
        if queue.redrive_policy is not None:
            wiring = (
                f" -> {queue.redrive_policy.target_dead_letter_queue}"
                f" after {queue.redrive_policy.max_receive_count} receives"
            )
        print(f"  {queue.name:<40} {queue.kind.value:<12} visibility={queue.visibility_timeout_seconds}s{wiring}")
    return EXIT_OK


async def cmd_list(services: Services, args: argparse.Namespace) -> int:
    queues = await services.inspector.list_queues()
    if args.json:
        print(json.dumps([queue.model_dump(mode='json', by_alias=True) for queue in queues], indent=2))
    else:
        print(format_queue_table(queues))
    return EXIT_OK


async def cmd_messages(services: Services, args: argparse.Namespace) -> int:
    page = await services.peeker.list_messages(args.queue, limit=args.limit, search=args.search)
    if args.json:
        _print_json(page)
    else:
        print(format_message_page(page))
    return EXIT_OK


async def cmd_delete(services: Services, args: argparse.Namespace) -> int:
    if not confirm(f"Delete message from {args.queue}?", args.yes):
        print("Aborted.")
        return EXIT_OK
    result = await services.engine.delete(args.queue, args.receipt_handle)
    print(result.message)
    return EXIT_OK


async def cmd_redrive(services: Services, args: argparse.Namespace) -> int:
    target = services.engine.resolve_target(args.queue, args.target)
    if not confirm(f"Move message from {args.queue} to {target}?", args.yes):
        print("Aborted.")
        return EXIT_OK
    message = QueueMessage(
        message_id=args.message_id or "unknown",
        receipt_handle=args.receipt_handle,
        body=args.body,
        message_attributes=json.loads(args.message_attributes) if args.message_attributes else None,
    )
    result = await services.engine.redrive(args.queue, message, target)
    print(result.message)
    return EXIT_OK


async def cmd_redrive_all(services: Services, args: argparse.Namespace) -> int:
    target = services.engine.resolve_target(args.queue, args.target)
    page = await services.peeker.list_messages(args.queue, limit=args.limit)
    if not page.messages:
        print(f"No messages visible in {args.queue}.")
        return EXIT_OK
    if not confirm(f"Move {len(page.messages)} messages from {args.queue} to {target}?", args.yes):
        print("Aborted.")
        return EXIT_OK

    # Ctrl-C stops new items; in-flight items finish
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except NotImplementedError:
        logger.debug("Signal handlers unsupported; Ctrl-C aborts immediately")

    try:
        result = await services.coordinator.apply_batch(
            args.queue,
            RedriveOperation(target_queue_name=target),
            page.messages,
            cancel_event=cancel_event
        )
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass

    print(format_batch_result(result))
    return EXIT_OK if result.failed == 0 else EXIT_ERROR


async def cmd_purge(services: Services, args: argparse.Namespace) -> int:
    print(f"WARNING: this permanently deletes every message in {args.queue}.")
    confirmation = input("Type the queue name to confirm: ")
    result = await services.purge_guard.purge(args.queue, confirmation)
    print(result.message)
    return EXIT_OK


async def cmd_watch(services: Services, args: argparse.Namespace) -> int:
    if not (services.settings.auto_refresh_enabled or args.enable_polling):
        print(
            "Live refresh is disabled. Refreshing a message view receives the messages again,\n"
            "which increments their receive counts and hides them from consumers.\n"
            "Set AUTO_REFRESH_ENABLED=true or pass --enable-polling to watch anyway.",
            file=sys.stderr
        )
        return EXIT_USAGE

    interval = args.interval or services.settings.auto_refresh_interval_seconds
    if args.queue:
        async def refresh():
            return await services.peeker.list_messages(args.queue, limit=args.limit)
        render = format_message_page
    else:
        refresh = services.inspector.list_queues
        render = format_queue_table

    scheduler = RefreshScheduler(
        refresh,
        interval_seconds=interval,
        name=args.queue or "queues",
        on_result=lambda result: print(render(result) + "\n")
    )
    scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        await scheduler.stop()
    return EXIT_OK


def cmd_provision(services: Services, args: argparse.Namespace) -> int:
    names = services.topology.names
    if not confirm(f"Create {len(names)} queues for {services.topology.environment}?", args.yes):
        print("Aborted.")
        return EXIT_OK
    client = boto3.client(
        'sqs',
        region_name=services.settings.aws_region,
        endpoint_url=services.settings.aws_endpoint_url
    )
    urls = provision_queues(services.topology, client)
    for name, url in urls.items():
        print(f"{name}: {url}")
    return EXIT_OK


ASYNC_COMMANDS = {
    'topology': cmd_topology,
    'list': cmd_list,
    'messages': cmd_messages,
    'delete': cmd_delete,
    'redrive': cmd_redrive,
    'redrive-all': cmd_redrive_all,
    'purge': cmd_purge,
    'watch': cmd_watch,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mailflow-queues",
        description="Inspect, redrive and purge Mailflow SQS queues"
    )
    parser.add_argument("--stage", help="Environment name (default: STAGE setting)")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of text")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("topology", help="Show declared queues and dead-letter wiring")
    sub.add_parser("list", help="List queues with live message counts")

    messages = sub.add_parser("messages", help="Inspect messages (increments receive counts)")
    messages.add_argument("queue")
    messages.add_argument("--limit", type=int, default=None)
    messages.add_argument("--search", default=None)

    delete = sub.add_parser("delete", help="Delete one message by receipt handle")
    delete.add_argument("queue")
    delete.add_argument("receipt_handle")
    delete.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    redrive = sub.add_parser("redrive", help="Move one message to its target queue")
    redrive.add_argument("queue")
    redrive.add_argument("receipt_handle")
    redrive.add_argument("--body", required=True, help="Message body to republish")
    redrive.add_argument("--message-id", default=None)
    redrive.add_argument("--message-attributes", default=None, help="Message attributes as JSON")
    redrive.add_argument("--target", default=None, help="Target queue (derived when omitted)")
    redrive.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    redrive_all = sub.add_parser("redrive-all", help="Move visible messages to the target queue")
    redrive_all.add_argument("queue")
    redrive_all.add_argument("--limit", type=int, default=None)
    redrive_all.add_argument("--target", default=None, help="Target queue (derived when omitted)")
    redrive_all.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    purge = sub.add_parser("purge", help="Delete every message in a queue (asks for the queue name)")
    purge.add_argument("queue")

    watch = sub.add_parser("watch", help="Refresh queue counts (or one queue's messages) periodically")
    watch.add_argument("--queue", default=None, help="Watch this queue's messages instead of counts")
    watch.add_argument("--limit", type=int, default=None)
    watch.add_argument("--interval", type=int, default=None, help="Seconds between refreshes")
    watch.add_argument("--enable-polling", action="store_true", help="Allow live refresh for this run")

    provision = sub.add_parser("provision", help="Create the declared queues")
    provision.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    return parser


def main(argv: Optional[List[str]] = None, config: Optional[Settings] = None) -> int:
    """Run the CLI and return its exit code."""
    args = build_parser().parse_args(argv)
    config = config or default_settings
    if args.stage:
        config = config.model_copy(update={'stage': args.stage})

    try:
        services = build_services(config)
        if args.command == 'provision':
            return cmd_provision(services, args)
        return asyncio.run(ASYNC_COMMANDS[args.command](services, args))

    except PartialBatchFailure as e:
        print(f"Error [{e.kind.value}]: {e.message}", file=sys.stderr)
        print(format_batch_result(e.result), file=sys.stderr)
        return EXIT_ERROR
    except QueueAdminError as e:
        print(f"Error [{e.kind.value}]: {e.message}", file=sys.stderr)
        return EXIT_ERROR
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
