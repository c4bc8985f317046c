"""Per-job service wiring.

Long-lived collaborators (config, schema flags, messenger, topic
classifier) live on ``Runtime``; stores bind to the job's connection, so
every service a handler touches shares the job transaction.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import psycopg

from .concern_commands import ConcernCommandExecutor
from .concern_store import PgConcernStore
from .concerns import ConcernLifecycle, TopicClassifier
from .config import Config
from .followup import FollowUpScheduler
from .followup_store import PgFollowUpStore
from .job_queue import PgJobQueue
from .messaging import Messenger
from .schema_capabilities import SchemaCapabilities


@dataclass
class Runtime:
    config: Config
    messenger: Messenger
    capabilities: SchemaCapabilities = field(default_factory=SchemaCapabilities)
    classifier: TopicClassifier | None = None


@dataclass
class Services:
    concerns: ConcernLifecycle
    commands: ConcernCommandExecutor
    followups: FollowUpScheduler
    messenger: Messenger
    classifier: TopicClassifier | None


def build_services(conn: psycopg.AsyncConnection[Any], runtime: Runtime) -> Services:
    config = runtime.config
    concerns = ConcernLifecycle(
        PgConcernStore(conn),
        match_threshold=config.match_threshold,
        aggregate_enabled=runtime.capabilities.aggregate_table,
    )
    followups = FollowUpScheduler(
        PgFollowUpStore(conn),
        PgJobQueue(conn, max_retries=config.max_retries),
        runtime.messenger,
        delay=timedelta(hours=config.checkin_delay_hours),
        active_window=timedelta(hours=config.active_window_hours),
        send_timeout_seconds=config.send_timeout_seconds,
    )
    return Services(
        concerns=concerns,
        commands=ConcernCommandExecutor(concerns),
        followups=followups,
        messenger=runtime.messenger,
        classifier=runtime.classifier,
    )
