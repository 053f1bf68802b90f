"""Metric definitions for the inbox pipelines."""

from __future__ import annotations

from .registry import registry


webhook_events_total = registry.counter(
    "inbox_webhook_events_total",
    "Webhook events handled, by event type and outcome.",
    label_names=("event_type", "outcome"),
)

messages_ingested_total = registry.counter(
    "inbox_messages_ingested_total",
    "Inbound messages persisted, by message type.",
    label_names=("message_type",),
)

outbound_messages_total = registry.counter(
    "inbox_outbound_messages_total",
    "Outgoing messages sent through the dispatcher.",
    label_names=("source", "outcome"),
)

provider_requests_total = registry.counter(
    "inbox_line_api_requests_total",
    "Calls made to the LINE Messaging API.",
    label_names=("endpoint", "outcome"),
)

broadcast_batches_total = registry.counter(
    "inbox_broadcast_batches_total",
    "Broadcast provider calls by mode and outcome.",
    label_names=("mode", "outcome"),
)

broadcast_recipients_total = registry.counter(
    "inbox_broadcast_recipients_total",
    "Broadcast recipients accounted for, by outcome.",
    label_names=("outcome",),
)

realtime_connections = registry.gauge(
    "inbox_realtime_active_connections",
    "Open dashboard event streams handled by this process.",
    label_names=("transport",),
)

realtime_events_total = registry.counter(
    "inbox_realtime_events_total",
    "Events published to dashboard connections.",
    label_names=("event_type",),
)

realtime_publish_errors_total = registry.counter(
    "inbox_realtime_publish_errors_total",
    "Per-connection write failures swallowed by the notifier.",
    label_names=("transport",),
)

db_retries_total = registry.counter(
    "inbox_db_retries_total",
    "Database units of work retried after a dropped connection.",
    label_names=("outcome",),
)
