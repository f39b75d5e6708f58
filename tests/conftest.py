"""Shared fixtures."""

import pytest
from prometheus_client import CollectorRegistry
from support import FakeClock, RecordingSender

from core.alerting.manager import NotificationDispatcher
from core.db.memory import InMemoryLivenessStore
from core.monitoring.lifecycle import AlertLifecycleManager
from core.monitoring.metrics import LivenessMetrics


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metrics():
    return LivenessMetrics(registry=CollectorRegistry())


@pytest.fixture
def store():
    return InMemoryLivenessStore()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def dispatcher(sender, metrics):
    return NotificationDispatcher(sender, send_timeout_seconds=1.0, metrics=metrics)


@pytest.fixture
def lifecycle(store, dispatcher, clock, metrics):
    return AlertLifecycleManager(store=store, dispatcher=dispatcher, clock=clock, metrics=metrics)
