from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Literal

import paho.mqtt.client as mqtt

from app.core.config import Settings
from app.repositories.staging_documents import StagingDocumentStore, normalize_document_id
from app.services.document_transformer import (
    DOCUMENT_ID_FIELD,
    STATION_FIELD,
    TIMESTAMP_FIELD,
    CandidateValue,
    extract_station_uuid,
    parse_numeric_value,
)
from app.services.metadata_cache import MetadataCache
from app.services.value_writer import CapturedValueWriter, ValuePersistError

# messages published by the gateway may echo registry fields next to readings
MESSAGE_RESERVED_FIELDS: frozenset[str] = frozenset(
    {DOCUMENT_ID_FIELD, STATION_FIELD, TIMESTAMP_FIELD, "estacao", "parametro"}
)

OutcomeStatus = Literal["stored", "dropped", "failed"]


@dataclass(frozen=True)
class MessageOutcome:
    status: OutcomeStatus
    reason: str | None = None
    station_uuid: str | None = None
    inserted_values: int = 0
    staging_deleted: bool = False


class MqttProcessorService:
    def __init__(
        self,
        *,
        settings: Settings,
        metadata_cache: MetadataCache,
        writer: CapturedValueWriter,
        document_store: StagingDocumentStore,
    ) -> None:
        self._settings = settings
        self._metadata_cache = metadata_cache
        self._writer = writer
        self._document_store = document_store
        self._logger = logging.getLogger("app.mqtt_processor")
        self._lock = Lock()
        self._executor: ThreadPoolExecutor | None = None

        self._topic = settings.mqtt_subscribe_topic
        self._qos = settings.mqtt_qos
        self._connected = False
        self._started = False
        self._counters: dict[str, int] = {
            "messages_received": 0,
            "stored": 0,
            "dropped": 0,
            "failed": 0,
            "values_inserted": 0,
        }
        self._last_message_ts: datetime | None = None
        self._last_error: str | None = None

        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=settings.mqtt_client_id,
            clean_session=True,
        )
        if settings.mqtt_username is not None:
            self._client.username_pw_set(settings.mqtt_username, settings.mqtt_password)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message
        self._client.reconnect_delay_set(min_delay=1, max_delay=30)

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._started = True
            self._executor = ThreadPoolExecutor(
                max_workers=self._settings.mqtt_processor_workers,
                thread_name_prefix="mqtt-processor",
            )
        self._logger.info(
            "starting mqtt processor broker=%s:%s topic=%s workers=%s",
            self._settings.mqtt_broker_host,
            self._settings.mqtt_broker_port,
            self._topic,
            self._settings.mqtt_processor_workers,
        )
        self._client.connect_async(
            host=self._settings.mqtt_broker_host,
            port=self._settings.mqtt_broker_port,
            keepalive=60,
        )
        self._client.loop_start()

    def stop(self) -> None:
        with self._lock:
            if not self._started:
                return
            self._started = False
            executor = self._executor
            self._executor = None
        self._logger.info("stopping mqtt processor topic=%s", self._topic)
        self._client.loop_stop()
        try:
            self._client.disconnect()
        except Exception:
            self._logger.exception("mqtt processor disconnect failed")
        if executor is not None:
            executor.shutdown(wait=True, cancel_futures=False)

    def get_status_snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "enabled": self._settings.mqtt_enabled,
                "running": self._started,
                "connected": self._connected,
                "broker_host": self._settings.mqtt_broker_host,
                "broker_port": self._settings.mqtt_broker_port,
                "client_id": self._settings.mqtt_client_id,
                "topic": self._topic,
                **self._counters,
                "last_message_ts": self._last_message_ts.isoformat() if self._last_message_ts else None,
                "last_error": self._last_error,
                "metadata_cache": self._metadata_cache.get_status_snapshot(),
            }

    def process_payload(self, payload: bytes) -> MessageOutcome:
        """Validate, resolve and store one message, then delete its staging copy.

        The delete runs after the insert has committed; if it fails the
        document stays in staging and the next sync run may insert the same
        readings again.
        """
        try:
            document = json.loads(payload.decode("utf-8", errors="replace"))
        except json.JSONDecodeError as exc:
            return self._drop("invalid-payload", None, f"payload is not valid JSON: {exc}")
        if not isinstance(document, dict):
            return self._drop("invalid-payload", None, "payload is not a JSON object")

        uuid = extract_station_uuid(document)
        if uuid is None:
            return self._drop("missing-identifier", None, "UUID missing from message")
        self._logger.debug("message received station=%s", uuid)

        raw_timestamp = document.get(TIMESTAMP_FIELD)
        if raw_timestamp is None:
            return self._drop("missing-timestamp", uuid, "unixtime missing from message")

        try:
            station = self._metadata_cache.resolve_station(uuid)
            bindings = self._metadata_cache.resolve_bindings(station.pk) if station is not None else {}
        except Exception as exc:
            self._logger.exception("metadata lookup failed station=%s", uuid)
            return self._drop("lookup-failed", uuid, str(exc))

        if station is None:
            return self._drop("unknown-station", uuid, "station not registered")
        if not bindings:
            return self._drop("no-bindings", uuid, "station has no bound parameters")

        timestamp = parse_epoch_seconds(raw_timestamp)
        if timestamp is None:
            return self._drop("invalid-timestamp", uuid, f"invalid unixtime {raw_timestamp!r}")

        rows: list[CandidateValue] = []
        for key, raw_value in document.items():
            if key in MESSAGE_RESERVED_FIELDS:
                continue
            binding = bindings.get(key)
            if binding is None:
                self._logger.info("parameter ignored station=%s key=%s reason=not bound", uuid, key)
                continue
            value = parse_numeric_value(raw_value)
            if value is None:
                self._logger.warning(
                    "parameter ignored station=%s key=%s reason=not numeric value=%r",
                    uuid,
                    key,
                    raw_value,
                )
                continue
            rows.append(
                CandidateValue(
                    timestamp=timestamp,
                    station_pk=station.pk,
                    binding_pk=binding.binding_pk,
                    value=value,
                )
            )

        if not rows:
            return self._drop("no-valid-values", uuid, "no bound numeric parameters in message")

        try:
            inserted = self._writer.write(rows)
        except ValuePersistError as exc:
            self._logger.error("message not stored station=%s error=%s", uuid, exc)
            with self._lock:
                self._last_error = str(exc)
            return MessageOutcome(status="failed", reason=exc.reason, station_uuid=uuid)
        self._logger.info("stored %s captured value(s) station=%s", inserted, uuid)

        return MessageOutcome(
            status="stored",
            station_uuid=uuid,
            inserted_values=inserted,
            staging_deleted=self._delete_staging_copy(document.get(DOCUMENT_ID_FIELD), uuid),
        )

    def _delete_staging_copy(self, raw_id: Any, uuid: str) -> bool:
        document_id = normalize_document_id(raw_id)
        if document_id is None:
            self._logger.warning("staging id missing or invalid station=%s id=%r; nothing deleted", uuid, raw_id)
            return False
        try:
            deleted = self._document_store.delete_one(document_id)
        except Exception as exc:
            self._logger.error("staging delete failed id=%s station=%s error=%s", document_id, uuid, exc)
            with self._lock:
                self._last_error = str(exc)
            return False
        if not deleted:
            self._logger.info("staging document already gone id=%s", document_id)
        return deleted

    def _drop(self, reason: str, uuid: str | None, detail: str) -> MessageOutcome:
        self._logger.warning("message dropped reason=%s station=%s detail=%s", reason, uuid, detail)
        return MessageOutcome(status="dropped", reason=reason, station_uuid=uuid)

    def _on_connect(
        self,
        client: mqtt.Client,
        _userdata: object,
        _flags: mqtt.ConnectFlags,
        reason_code: mqtt.ReasonCode,
        _properties: mqtt.Properties | None,
    ) -> None:
        if reason_code.is_failure:
            self._logger.error("mqtt connect failed reason=%s", reason_code)
            return

        with self._lock:
            self._connected = True
        result, _mid = client.subscribe(self._topic, qos=self._qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._logger.error("mqtt subscribe failed topic=%s rc=%s", self._topic, result)
            return
        self._logger.info("mqtt connected and subscribed topic=%s qos=%s", self._topic, self._qos)

    def _on_disconnect(
        self,
        _client: mqtt.Client,
        _userdata: object,
        _flags: mqtt.DisconnectFlags,
        reason_code: mqtt.ReasonCode,
        _properties: mqtt.Properties | None,
    ) -> None:
        with self._lock:
            self._connected = False
        self._logger.warning("mqtt disconnected reason=%s", reason_code)

    def _on_message(self, _client: mqtt.Client, _userdata: object, message: mqtt.MQTTMessage) -> None:
        with self._lock:
            executor = self._executor
        if executor is None:
            return
        try:
            executor.submit(self._process_message, message.topic, bytes(message.payload))
        except RuntimeError:
            self._logger.warning("mqtt message ignored during shutdown topic=%s", message.topic)

    def _process_message(self, topic: str, payload: bytes) -> None:
        with self._lock:
            self._counters["messages_received"] += 1
            self._last_message_ts = datetime.now(timezone.utc)
        try:
            outcome = self.process_payload(payload)
        except Exception as exc:
            self._logger.exception("mqtt message processing crashed topic=%s", topic)
            outcome = MessageOutcome(status="failed", reason=str(exc))

        with self._lock:
            self._counters[outcome.status] += 1
            self._counters["values_inserted"] += outcome.inserted_values


def parse_epoch_seconds(value: Any) -> datetime | None:
    # no millisecond detection here: gateways publish whole seconds
    seconds = parse_numeric_value(value)
    if seconds is None:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
