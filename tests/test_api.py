from __future__ import annotations

import asyncio

from mttr.api import Client, FieldState, Found, SimulatedBackend, SimulatedDevice


def _client(notifier) -> Client:
    backend = SimulatedBackend(
        [SimulatedDevice(id=3, model_number=1060, registers={64: 0, 104: 0})],
        ports=("COM3",),
    )
    return Client(backend, notifier=notifier)


def test_public_client_scan_and_read(notifier) -> None:
    client = _client(notifier)

    async def scenario():
        assert await client.list_ports() == ["COM3"]
        outcome = await client.scan("COM3", id_end=5)
        assert outcome is not None
        return await client.select_device(3)

    outcome = asyncio.run(scenario())

    assert outcome is not None and outcome.finished
    assert client.model is not None and client.model.name == "XL430-W250"
    assert client.cache.get(7) == FieldState(value=3)
    assert client.loading is False
    assert client.load_warnings == ()


def test_public_client_edit_and_velocity(notifier) -> None:
    client = _client(notifier)

    async def scenario():
        await client.scan("COM3", id_end=5)
        await client.select_device(3)
        client.begin_edit("Torque Enable")
        written = await client.commit("Torque Enable", "1")
        control = client.velocity_control()
        control.drag(120)
        released = await client.release_control(control)
        return written, released

    assert asyncio.run(scenario()) == (True, True)
    assert client.cache.get(64) == FieldState(value=1)
    assert client.cache.get(104) == FieldState(value=120)
    assert notifier.errors == []


def test_public_client_disconnect(notifier) -> None:
    client = _client(notifier)

    async def scenario():
        await client.scan("COM3", id_end=5)
        await client.select_device(3)
        await client.disconnect()

    asyncio.run(scenario())

    assert client.devices == []
    assert client.active is None
    assert client.config is None


def test_public_client_streams_scan_events(notifier) -> None:
    found = []

    def on_event(event) -> None:
        if isinstance(event, Found):
            found.append((event.device.id, len(client.scan_results)))

    client = Client(
        SimulatedBackend(
            [SimulatedDevice(id=2, model_number=1060), SimulatedDevice(id=4, model_number=1060)],
            ports=("COM3",),
        ),
        notifier=notifier,
        scan_listener=on_event,
    )

    outcome = asyncio.run(client.scan("COM3", id_end=5))

    assert found == [(2, 1), (4, 2)]
    assert outcome is not None and [d.id for d in outcome.devices] == [2, 4]
    assert client.scan_progress is None
