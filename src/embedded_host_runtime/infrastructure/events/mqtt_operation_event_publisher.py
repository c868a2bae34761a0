"""MQTT operation state event publisher."""

from __future__ import annotations

import asyncio
import json
import time
from datetime import UTC, datetime
from typing import Any

from embedded_host_runtime.domain.operations import OperationSnapshot
from embedded_host_runtime.domain.ports import OperationEventPublisher


class MqttOperationEventPublisher(OperationEventPublisher):
    """Publish operation tracking snapshots to MQTT topics."""

    def __init__(
        self,
        runtime_id: str,
        broker_host: str,
        broker_port: int = 1883,
        topic_prefix: str = "embedded/runtime",
        qos: int = 0,
        username: str | None = None,
        password: str | None = None,
    ) -> None:
        if not broker_host.strip():
            raise ValueError("broker_host cannot be empty.")
        if qos not in {0, 1, 2}:
            raise ValueError("qos must be one of 0, 1, 2.")

        self._runtime_id = runtime_id
        self._topic_prefix = topic_prefix.strip().strip("/")
        self._qos = qos

        try:
            import paho.mqtt.client as mqtt  # type: ignore[import-untyped]
        except ModuleNotFoundError as exc:
            raise RuntimeError(
                "paho-mqtt is required for MQTT operation events. "
                "Install project dependencies first."
            ) from exc

        try:
            client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=f"embedded-runtime-{runtime_id}",
            )
        except (AttributeError, TypeError):
            client = mqtt.Client(client_id=f"embedded-runtime-{runtime_id}")

        if username is not None:
            client.username_pw_set(username=username, password=password)
        self._connect_with_retry(
            client=client,
            broker_host=broker_host,
            broker_port=broker_port,
        )
        client.loop_start()
        self._client = client

    async def publish_state(self, snapshot: OperationSnapshot) -> None:
        payload: dict[str, object] = {
            "eventType": "operationState",
            "timestamp": self._timestamp(),
            "runtimeId": self._runtime_id,
            "kind": snapshot.kind,
            "state": snapshot.state.value,
            "operationId": snapshot.operation_id,
            "status": snapshot.status.value if snapshot.status is not None else None,
            "progressFraction": snapshot.progress_fraction,
            "percentComplete": snapshot.percent_complete,
            "error": snapshot.error,
            "persistenceDegraded": snapshot.persistence_degraded,
        }
        topic = f"{self._topic_prefix}/{self._runtime_id}/operations/{snapshot.kind}/state"
        await self._publish(topic, payload)

    async def close(self) -> None:
        """Stop the network loop and disconnect."""

        await asyncio.to_thread(self._client.loop_stop)
        await asyncio.to_thread(self._client.disconnect)

    async def _publish(self, topic: str, payload: dict[str, object]) -> None:
        message = json.dumps(payload, separators=(",", ":"))
        await asyncio.to_thread(self._client.publish, topic, message, self._qos)

    def _timestamp(self) -> str:
        return datetime.now(tz=UTC).isoformat()

    def _connect_with_retry(
        self,
        client: Any,
        broker_host: str,
        broker_port: int,
        max_attempts: int = 20,
    ) -> None:
        """Connect to MQTT broker with bounded retry/backoff."""

        delay_seconds = 0.5
        last_error: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                client.connect(host=broker_host, port=broker_port, keepalive=60)
                return
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                if attempt == max_attempts:
                    break
                time.sleep(delay_seconds)
                delay_seconds = min(3.0, delay_seconds * 1.5)

        raise RuntimeError(
            f"Failed to connect to MQTT broker {broker_host}:{broker_port} "
            f"after {max_attempts} attempts."
        ) from last_error


__all__ = ["MqttOperationEventPublisher"]
