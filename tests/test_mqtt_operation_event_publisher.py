from __future__ import annotations

import asyncio
import json
from typing import Any

import paho.mqtt.client as mqtt
import pytest

from embedded_host_runtime.domain.operations import (
    OperationSnapshot,
    OperationState,
    RemoteOperationStatus,
)
from embedded_host_runtime.infrastructure.events import MqttOperationEventPublisher


class FakeMqttClient:
    instances: list[FakeMqttClient] = []

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.client_id = kwargs.get("client_id")
        self.connected_to: tuple[str, int] | None = None
        self.credentials: tuple[str, str | None] | None = None
        self.published: list[tuple[str, str, int]] = []
        self.loop_running = False
        self.disconnected = False
        FakeMqttClient.instances.append(self)

    def username_pw_set(self, username: str, password: str | None = None) -> None:
        self.credentials = (username, password)

    def connect(self, host: str, port: int, keepalive: int) -> None:
        self.connected_to = (host, port)

    def loop_start(self) -> None:
        self.loop_running = True

    def loop_stop(self) -> None:
        self.loop_running = False

    def disconnect(self) -> None:
        self.disconnected = True

    def publish(self, topic: str, payload: str, qos: int) -> None:
        self.published.append((topic, payload, qos))


@pytest.fixture
def fake_client(monkeypatch: pytest.MonkeyPatch) -> type[FakeMqttClient]:
    FakeMqttClient.instances = []
    monkeypatch.setattr(mqtt, "Client", FakeMqttClient)
    return FakeMqttClient


def test_publish_state_uses_kind_topic_and_camel_case_payload(
    fake_client: type[FakeMqttClient],
) -> None:
    publisher = MqttOperationEventPublisher(
        runtime_id="runtime-a",
        broker_host="broker.local",
        broker_port=1884,
        topic_prefix="/embedded/runtime/",
        qos=1,
        username="svc",
        password="secret",
    )

    asyncio.run(
        publisher.publish_state(
            OperationSnapshot(
                kind="install",
                state=OperationState.POLLING,
                operation_id="op-1",
                status=RemoteOperationStatus.RUNNING,
                progress_fraction=0.375,
            )
        )
    )
    asyncio.run(publisher.close())

    client = fake_client.instances[0]
    assert client.client_id == "embedded-runtime-runtime-a"
    assert client.connected_to == ("broker.local", 1884)
    assert client.credentials == ("svc", "secret")
    assert client.loop_running is False
    assert client.disconnected is True
    topic, raw_payload, qos = client.published[0]
    assert topic == "embedded/runtime/runtime-a/operations/install/state"
    assert qos == 1
    payload = json.loads(raw_payload)
    assert payload["eventType"] == "operationState"
    assert payload["state"] == "POLLING"
    assert payload["status"] == "running"
    assert payload["operationId"] == "op-1"
    assert payload["percentComplete"] == 37.5
    assert payload["persistenceDegraded"] is False


def test_publisher_validates_broker_settings(fake_client: type[FakeMqttClient]) -> None:
    with pytest.raises(ValueError, match="broker_host"):
        MqttOperationEventPublisher(runtime_id="runtime-a", broker_host=" ")
    with pytest.raises(ValueError, match="qos"):
        MqttOperationEventPublisher(runtime_id="runtime-a", broker_host="broker", qos=3)
    assert fake_client.instances == []
