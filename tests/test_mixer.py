"""
Tests for MixerConnection and the X32 helpers.

Validates address building, the fader law, meter parsing, reconnect
semantics and a full exchange with the console emulator.
"""

import asyncio
import struct

import numpy as np
import pytest

from maestro import codec
from maestro.errors import TransportError
from maestro.mixer import (
    MixerConnection,
    channel_address,
    db_to_fader,
    fader_to_db,
    parse_meters,
    validate_channel,
    FADER,
    MUTE,
    NAME,
)
from maestro import mixer as mixer_module
from maestro.osc import OSCSession, SessionState
from maestro.simulator.x32_emulator import X32Emulator
from maestro.types import Message
from tests.utils import LOOPBACK, open_peer, wait_until


class TestAddresses:
    """Test channel address helpers."""

    def test_channel_address(self):
        assert channel_address(1, FADER) == "/ch/01/mix/fader"
        assert channel_address(12, NAME) == "/ch/12/config/name"
        assert channel_address(32, MUTE) == "/ch/32/mix/on"

    def test_validate_channel(self):
        validate_channel(1)
        validate_channel(32)
        for bad in (0, 33, -1, "1", True, 1.0):
            with pytest.raises(ValueError):
                validate_channel(bad)


class TestFaderLaw:
    """Test conversion between fader position and dB."""

    def test_reference_points(self):
        assert fader_to_db(0.75) == "0.0"
        assert fader_to_db(0.5) == "-10.0"
        assert fader_to_db(0.875) == "+5.0"
        assert fader_to_db(0.25) == "-30.0"
        assert fader_to_db(0.0625) == "-60.0"
        assert fader_to_db(0.03125) == "-75.0"

    def test_extremes(self):
        assert fader_to_db(1.0) == "+10 dB"
        assert fader_to_db(1.2) == "+10 dB"
        assert fader_to_db(0.0) == "-oo dB"
        assert fader_to_db(-0.1) == "-oo dB"

    def test_db_to_fader(self):
        assert db_to_fader(0) == pytest.approx(0.75)
        assert db_to_fader(-10) == pytest.approx(0.5)
        assert db_to_fader(-30) == pytest.approx(0.25)
        assert db_to_fader(-60) == pytest.approx(0.0625)
        assert db_to_fader(10) == 1.0
        assert db_to_fader(-100) == 0.0

    def test_inverse(self):
        for level in (0.1, 0.3, 0.6, 0.9):
            assert db_to_fader(float(fader_to_db(level))) == pytest.approx(level, abs=0.002)


class TestMeters:
    """Test /meters blob parsing."""

    def test_plain_levels(self):
        levels = np.linspace(0.0, 0.8, 32, dtype="<f4")
        parsed = parse_meters(levels.tobytes())
        assert parsed.dtype == np.float32
        assert len(parsed) == 32
        np.testing.assert_array_equal(parsed, levels)

    def test_count_header_stripped(self):
        levels = np.full(8, 0.5, dtype="<f4")
        blob = struct.pack("<i", 8) + levels.tobytes()
        parsed = parse_meters(blob)
        assert len(parsed) == 8
        np.testing.assert_array_equal(parsed, levels)

    def test_bad_length(self):
        with pytest.raises(ValueError):
            parse_meters(b"\x00\x00\x00")

    def test_result_is_writable(self):
        parsed = parse_meters(np.zeros(4, dtype="<f4").tobytes())
        parsed[0] = 1.0
        assert parsed[0] == 1.0


class TestWithoutSession:
    """Test sends before connect()."""

    def test_send_reports_not_initialized(self):
        mixer = MixerConnection()
        errors = []
        mixer.send("/xremote", callback=errors.append)
        assert len(errors) == 1
        assert isinstance(errors[0], TransportError)
        assert "not initialized" in str(errors[0])

    def test_send_without_callback_does_not_raise(self):
        mixer = MixerConnection()
        mixer.set_channel_fader(1, 0.5)
        assert not mixer.connected
        assert mixer.remote is None

    def test_disconnect_without_session(self):
        async def scenario():
            mixer = MixerConnection()
            mixer.disconnect()
            await mixer.close()
            assert mixer.session is None

        asyncio.run(scenario())


class TestCommands:
    """Test helper commands as seen by the console."""

    def test_helpers_send_expected_messages(self):
        async def scenario():
            transport, peer = await open_peer()
            mixer = MixerConnection(port=peer.port, local_host=LOOPBACK)
            await mixer.connect(LOOPBACK)
            assert mixer.connected
            assert mixer.remote == (LOOPBACK, peer.port)

            mixer.subscribe()
            mixer.set_channel_fader(1, 1.5)
            mixer.set_channel_mute(2, True)
            mixer.set_channel_mute(3, False)
            mixer.request_channel_name(5)
            mixer.request_channel_fader(6)
            mixer.request_channel_mute(7)
            mixer.request_meters()
            mixer.send_custom_command("/-stat/solosw/01", 1)

            expected = [
                Message("/xremote", []),
                Message("/ch/01/mix/fader", [1.0]),
                Message("/ch/02/mix/on", [0]),
                Message("/ch/03/mix/on", [1]),
                Message("/ch/05/config/name", []),
                Message("/ch/06/mix/fader", []),
                Message("/ch/07/mix/on", []),
                Message("/meters", ["/meters/1"]),
                Message("/-stat/solosw/01", [1]),
            ]
            for message in expected:
                data, addr = await peer.next()
                assert codec.from_buffer(data) == message
                assert addr[1] == mixer.session.local_port

            await mixer.close()
            transport.close()

        asyncio.run(scenario())

    def test_invalid_channel(self):
        mixer = MixerConnection()
        with pytest.raises(ValueError):
            mixer.set_channel_fader(33, 0.5)


class TestReconnect:
    """Test that changing the console address replaces the session."""

    def test_reconnect_keeps_handlers(self):
        async def scenario():
            transport_a, peer_a = await open_peer()
            transport_b, peer_b = await open_peer()
            received = []

            mixer = MixerConnection(local_host=LOOPBACK)
            mixer.on("/ch/01/mix/fader", lambda args, sender: received.append((args, sender)))

            await mixer.connect(LOOPBACK, peer_a.port)
            first = mixer.session

            await mixer.connect(LOOPBACK, peer_b.port)
            second = mixer.session
            assert first is not second
            assert first.state is SessionState.CLOSED
            assert second.is_bound
            assert mixer.remote == (LOOPBACK, peer_b.port)

            transport_b.sendto(codec.to_buffer(Message("/ch/01/mix/fader", [0.25])),
                               (LOOPBACK, second.local_port))
            assert await wait_until(lambda: received)
            assert received == [([0.25], (LOOPBACK, peer_b.port))]

            await mixer.close()
            transport_a.close()
            transport_b.close()

        asyncio.run(scenario())

    def test_overlapping_connects_leave_one_session(self, monkeypatch):
        """Two connect() calls in flight at once: only the last session stays bound."""
        created = []

        class RecordingSession(OSCSession):
            def __init__(self, *args, **kwargs):
                super().__init__(*args, **kwargs)
                created.append(self)

        monkeypatch.setattr(mixer_module, "OSCSession", RecordingSession)

        async def scenario():
            transport, peer = await open_peer()
            mixer = MixerConnection(port=peer.port, local_host=LOOPBACK)

            await asyncio.gather(mixer.connect(LOOPBACK), mixer.connect(LOOPBACK))

            assert len(created) == 2
            assert [session.is_bound for session in created] == [False, True]
            assert mixer.session is created[1]

            await mixer.close()
            assert not any(session.is_bound for session in created)
            transport.close()

        asyncio.run(scenario())

    def test_close_waits_for_pending_connect(self, monkeypatch):
        created = []

        class RecordingSession(OSCSession):
            def __init__(self, *args, **kwargs):
                super().__init__(*args, **kwargs)
                created.append(self)

        monkeypatch.setattr(mixer_module, "OSCSession", RecordingSession)

        async def scenario():
            transport, peer = await open_peer()
            mixer = MixerConnection(port=peer.port, local_host=LOOPBACK)

            await asyncio.gather(mixer.connect(LOOPBACK), mixer.close())

            assert len(created) == 1
            assert created[0].state is SessionState.CLOSED
            assert mixer.session is None
            transport.close()

        asyncio.run(scenario())

    def test_off_applies_to_future_sessions(self):
        async def scenario():
            transport, peer = await open_peer()
            received = []

            def handler(message, sender):
                received.append(message)

            mixer = MixerConnection(port=peer.port, local_host=LOOPBACK)
            mixer.on("message", handler)
            mixer.off("message", handler)
            await mixer.connect(LOOPBACK)

            transport.sendto(codec.to_buffer(Message("/x")), (LOOPBACK, mixer.session.local_port))
            await asyncio.sleep(0.05)
            assert received == []

            await mixer.close()
            transport.close()

        asyncio.run(scenario())

    def test_send_in_flight_during_rebind(self):
        """A send issued before the rebind completes against the old session only."""
        async def scenario():
            transport_a, peer_a = await open_peer()
            transport_b, peer_b = await open_peer()
            results = []

            mixer = MixerConnection(local_host=LOOPBACK)
            await mixer.connect(LOOPBACK, peer_a.port)

            mixer.send("/ch/01/mix/fader", 0.5, callback=results.append)
            await mixer.connect(LOOPBACK, peer_b.port)

            assert await wait_until(lambda: results)
            assert results == [None]

            data, _ = await peer_a.next()
            assert codec.from_buffer(data) == Message("/ch/01/mix/fader", [0.5])
            with pytest.raises(asyncio.TimeoutError):
                await peer_b.next(timeout=0.1)

            await mixer.close()
            transport_a.close()
            transport_b.close()

        asyncio.run(scenario())


class TestWithEmulator:
    """Test a full exchange with the python-osc based console emulator."""

    def test_name_query_subscription_and_meters(self):
        async def scenario():
            emulator = X32Emulator(host=LOOPBACK, port=0, seed=7)
            await emulator.start()

            names = []
            faders = []
            meters = []
            mixer = MixerConnection(port=emulator.port, local_host=LOOPBACK)
            mixer.on("/ch/05/config/name", lambda args, sender: names.append(args))
            mixer.on("/ch/01/mix/fader", lambda args, sender: faders.append(args[0]))
            mixer.on("/meters/1", lambda args, sender: meters.append(parse_meters(args[0])))
            await mixer.connect(LOOPBACK)

            mixer.request_channel_name(5)
            assert await wait_until(lambda: names)
            assert names == [["Drums OH L"]]

            mixer.subscribe()
            assert await wait_until(lambda: emulator.subscribers)
            emulator.tick()
            assert await wait_until(lambda: faders)
            assert faders[0] == pytest.approx(emulator.sweep_step, abs=1e-6)

            mixer.request_meters()
            assert await wait_until(lambda: meters)
            assert len(meters[0]) == 32

            mixer.set_channel_fader(3, 0.6)
            assert await wait_until(lambda: emulator.get_channel(3).fader_level == pytest.approx(0.6, abs=1e-6))

            await mixer.close()
            emulator.stop()

        asyncio.run(scenario())
