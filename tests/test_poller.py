"""Tests for the polling loop against the simulated provider."""

import asyncio
import json
import logging
import time

from ble_poller.ble.simulated import SimulatedProvider
from ble_poller.poller import PollOutcome, Poller

from conftest import CONFIG_UUID, SERVICE_UUID, VALUE_UUID

TARGET = "AA:BB:CC:DD:EE:FF"


class TestPollOnce:
    """Single find/connect/read/disconnect iterations."""

    def test_reading_decoded(self, make_config, make_peripheral):
        """Payload 0x10 0x02 is reported as 528."""
        peripheral = make_peripheral(value=bytes([0x10, 0x02]))
        poller = Poller(make_config(mac=TARGET), SimulatedProvider([[peripheral]]))

        result = asyncio.run(poller.poll_once())

        assert result.outcome is PollOutcome.READING
        assert result.reading.value == 528
        assert result.reading.raw == b"\x10\x02"
        assert result.address == TARGET
        assert peripheral.connect_calls == 1
        assert peripheral.disconnect_calls == 1
        assert not peripheral.connected

    def test_target_appears_on_third_poll(self, make_config, make_peripheral):
        """Absent on two polls, present on the third: matcher returns and connects."""
        target = make_peripheral()
        other = make_peripheral(address="11:22:33:44:55:66", name="Other")
        provider = SimulatedProvider([[other], [], [other, target]])
        poller = Poller(make_config(mac=TARGET), provider)

        result = asyncio.run(poller.poll_once())

        assert provider.list_calls == 3
        assert target.connect_calls == 1
        assert other.connect_calls == 0
        assert result.outcome is PollOutcome.READING

    def test_name_fallback(self, make_config, make_peripheral):
        target = make_peripheral(address="12:34:56:78:9A:BC", name="Intech_BLE")
        other = make_peripheral(address="AA:AA:AA:AA:AA:AA", name="Speaker")
        poller = Poller(make_config(), SimulatedProvider([[other, target]]))

        result = asyncio.run(poller.poll_once())

        assert result.address == "12:34:56:78:9A:BC"
        assert other.connect_calls == 0

    def test_connect_failure(self, make_config, make_peripheral):
        peripheral = make_peripheral(connect_error=ConnectionError("le-connection-abort-by-local"))
        poller = Poller(make_config(mac=TARGET), SimulatedProvider([[peripheral]]))

        result = asyncio.run(poller.poll_once())

        assert result.outcome is PollOutcome.CONNECT_FAILED
        assert peripheral.read_calls == 0
        assert peripheral.handles[0].released

    def test_empty_service_list(self, make_config, make_peripheral):
        peripheral = make_peripheral(services={})
        poller = Poller(make_config(mac=TARGET), SimulatedProvider([[peripheral]]))

        result = asyncio.run(poller.poll_once())

        assert result.outcome is PollOutcome.NO_SERVICES
        assert peripheral.disconnect_calls == 1

    def test_service_not_found_skips_characteristics(self, make_config, make_peripheral, caplog):
        """A foreign service list aborts the iteration before any read."""
        peripheral = make_peripheral(services={
            "0000180f-0000-1000-8000-00805f9b34fb": {VALUE_UUID: b"\x10\x02"},
        })
        poller = Poller(make_config(mac=TARGET), SimulatedProvider([[peripheral]]))

        with caplog.at_level(logging.WARNING):
            result = asyncio.run(poller.poll_once())

        assert result.outcome is PollOutcome.SERVICE_NOT_FOUND
        assert peripheral.read_calls == 0
        assert peripheral.disconnect_calls == 1
        assert f"Could not find service {SERVICE_UUID}" in caplog.text

    def test_missing_config_characteristic_still_reads(self, make_config, make_peripheral, caplog):
        peripheral = make_peripheral(chars={VALUE_UUID: b"\x48\x00"})
        poller = Poller(make_config(mac=TARGET), SimulatedProvider([[peripheral]]))

        with caplog.at_level(logging.WARNING):
            result = asyncio.run(poller.poll_once())

        assert "Could not find characteristics" in caplog.text
        assert CONFIG_UUID in caplog.text
        assert peripheral.read_calls == 1
        assert result.outcome is PollOutcome.READING
        assert result.reading.value == 72

    def test_missing_value_characteristic_is_read_failure(self, make_config, make_peripheral, caplog):
        peripheral = make_peripheral(chars={CONFIG_UUID: b"\x01"})
        poller = Poller(make_config(mac=TARGET), SimulatedProvider([[peripheral]]))

        with caplog.at_level(logging.WARNING):
            result = asyncio.run(poller.poll_once())

        assert "Could not find characteristics" in caplog.text
        assert result.outcome is PollOutcome.READ_FAILED
        assert peripheral.disconnect_calls == 1

    def test_read_failure_still_disconnects(self, make_config, make_peripheral):
        peripheral = make_peripheral(value=OSError("Operation failed with ATT error: 0x0e"))
        poller = Poller(make_config(mac=TARGET), SimulatedProvider([[peripheral]]))

        result = asyncio.run(poller.poll_once())

        assert result.outcome is PollOutcome.READ_FAILED
        assert peripheral.disconnect_calls == 1

    def test_short_payload(self, make_config, make_peripheral):
        peripheral = make_peripheral(value=b"\x07")
        poller = Poller(make_config(mac=TARGET), SimulatedProvider([[peripheral]]))

        result = asyncio.run(poller.poll_once())

        assert result.outcome is PollOutcome.SHORT_PAYLOAD
        assert result.reading is None
        assert poller.reading_count == 0

    def test_disconnect_failure_swallowed(self, make_config, make_peripheral):
        peripheral = make_peripheral(disconnect_error=EOFError("D-Bus connection closed"))
        poller = Poller(make_config(mac=TARGET), SimulatedProvider([[peripheral]]))

        result = asyncio.run(poller.poll_once())

        assert result.outcome is PollOutcome.READING
        assert result.reading.value == 528

    def test_handles_released_after_iteration(self, make_config, make_peripheral):
        peripheral = make_peripheral()
        poller = Poller(make_config(mac=TARGET), SimulatedProvider([[peripheral]]))

        asyncio.run(poller.poll_once())

        assert len(peripheral.handles) == 1
        assert peripheral.handles[0].released


class TestRunLoop:
    """Outer loop retries and cancellation."""

    def test_each_failure_kind_is_recoverable(self, make_config, make_peripheral):
        """Connect, read and disconnect failures each leave the loop running."""
        values = iter([OSError("read timeout"), b"\x01\x00", b"\x02\x00"])

        def next_value():
            value = next(values)
            if isinstance(value, Exception):
                raise value
            return value

        peripheral = make_peripheral(
            value=next_value,
            connect_error=[ConnectionError("busy")],
            disconnect_error=[None, OSError("not connected")],
        )
        poller = Poller(make_config(mac=TARGET), SimulatedProvider([[peripheral]]))
        readings = []
        poller.set_reading_callback(readings.append)

        asyncio.run(poller.run(max_iterations=4))

        status = poller.get_status()
        assert poller.iterations == 4
        assert status["outcomes"]["connect_failed"] == 1
        assert status["outcomes"]["read_failed"] == 1
        assert status["outcomes"]["reading"] == 2
        assert [r.value for r in readings] == [1, 2]
        assert status["last_reading"] == 2
        # Every handle from every iteration was released
        assert all(handle.released for handle in peripheral.handles)

    def test_stop_during_discovery(self, make_config, make_peripheral):
        """A stop during the discovery wait ends run() without raising."""
        provider = SimulatedProvider([[make_peripheral(address="11:22:33:44:55:66")]])
        poller = Poller(make_config(mac=TARGET, poll_sec=0.01), provider)
        provider.set_list_callback(lambda n: poller.request_stop() if n == 3 else None)

        asyncio.run(poller.run())

        assert provider.list_calls == 3
        assert poller.iterations == 1
        assert poller.get_status()["outcomes"]["cancelled"] == 1

    def test_stop_interrupts_poll_interval(self, make_config):
        """Discovery exits within one poll interval of the stop request."""
        poll_sec = 0.5
        poller = Poller(make_config(mac=TARGET, poll_sec=poll_sec), SimulatedProvider([[]]))

        async def scenario():
            asyncio.get_running_loop().call_later(0.05, poller.request_stop)
            start = time.monotonic()
            await poller.run()
            return time.monotonic() - start

        elapsed = asyncio.run(scenario())

        assert poller.stop_requested
        assert elapsed < poll_sec

    def test_stop_before_run(self, make_config, make_peripheral):
        peripheral = make_peripheral()
        provider = SimulatedProvider([[peripheral]])
        poller = Poller(make_config(mac=TARGET), provider)
        poller.request_stop()

        asyncio.run(poller.run())

        assert poller.iterations == 0
        assert peripheral.connect_calls == 0
        assert provider.scanning

    def test_discovery_start_failure_logged(self, make_config, make_peripheral, caplog):
        provider = SimulatedProvider([[make_peripheral()]], start_ok=False)
        poller = Poller(make_config(mac=TARGET), provider)

        with caplog.at_level(logging.INFO):
            asyncio.run(poller.run(max_iterations=1))

        assert "Started = false" in caplog.text
        assert poller.reading_count == 1


class TestJournal:
    """Readings and errors go to the NDJSON journal."""

    def test_reading_journaled(self, make_config, make_peripheral):
        config = make_config(mac=TARGET)
        poller = Poller(config, SimulatedProvider([[make_peripheral()]]))

        asyncio.run(poller.run(max_iterations=1))
        path = poller.journal.current_path
        poller.close()

        records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        readings = [r for r in records if r["type"] == "event" and r["msg"] == "reading"]
        assert len(readings) == 1
        assert readings[0]["address"] == TARGET
        assert readings[0]["data"]["value"] == 528
        assert readings[0]["data"]["raw"] == "1002"
        assert records[-1]["msg"] == "Poller stopped"

    def test_connect_error_journaled(self, make_config, make_peripheral):
        peripheral = make_peripheral(connect_error=ConnectionError("busy"))
        poller = Poller(make_config(mac=TARGET), SimulatedProvider([[peripheral]]))

        asyncio.run(poller.poll_once())
        path = poller.journal.current_path
        poller.close()

        records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        errors = [r for r in records if r["type"] == "error"]
        assert errors[0]["msg"] == "Connect failed"
        assert errors[0]["data"] == {"error": "busy", "type": "ConnectionError"}


class TestReadingCallback:
    def test_failing_callback_does_not_stop_loop(self, make_config, make_peripheral, caplog):
        poller = Poller(make_config(mac=TARGET), SimulatedProvider([[make_peripheral()]]))
        poller.set_reading_callback(lambda reading: 1 / 0)

        with caplog.at_level(logging.ERROR):
            asyncio.run(poller.run(max_iterations=2))
        path = poller.journal.current_path
        poller.close()

        assert poller.iterations == 2
        assert poller.reading_count == 2
        assert "Reading callback failed" in caplog.text
        records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        errors = [r for r in records if r["msg"] == "Reading callback failed"]
        assert len(errors) == 2
        assert errors[0]["data"]["type"] == "ZeroDivisionError"


class TestDebugJournal:
    """Enumerations are journaled as debug records in verbose mode only."""

    def _records(self, config, make_peripheral):
        other = make_peripheral(address="11:22:33:44:55:66", name="Speaker")
        poller = Poller(config, SimulatedProvider([[other, make_peripheral()]]))
        asyncio.run(poller.run(max_iterations=1))
        path = poller.journal.current_path
        poller.close()
        return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]

    def test_verbose_mode_records_enumerations(self, make_config, make_peripheral):
        config = make_config(mac=TARGET)
        config.logging.mode = "verbose"

        debug = {r["msg"]: r["data"] for r in self._records(config, make_peripheral) if r["type"] == "debug"}

        assert [d["address"] for d in debug["Discovered devices"]["devices"]] == ["11:22:33:44:55:66", TARGET]
        assert debug["Discovered devices"]["devices"][0]["name"] == "Speaker"
        assert debug["Discovered devices"]["devices"][0]["rssi"] == -60
        assert debug["Discovered services"]["uuids"] == [SERVICE_UUID]
        assert debug["Discovered characteristics"]["service"] == SERVICE_UUID
        assert debug["Discovered characteristics"]["uuids"] == [CONFIG_UUID, VALUE_UUID]

    def test_regular_mode_has_no_debug_records(self, make_config, make_peripheral):
        records = self._records(make_config(mac=TARGET), make_peripheral)

        assert not [r for r in records if r["type"] == "debug"]
        assert [r for r in records if r["msg"] == "reading"]
