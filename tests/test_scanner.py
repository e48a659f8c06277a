import asyncio

import pytest
from bleak.exc import BleakError

from oxysmart_receiver.config import NOTIFY_CHAR_UUID
from oxysmart_receiver.errors import (
    NoAdapterError,
    NoMatchingPeripheralError,
    NoPeripheralsFoundError,
    ServiceDiscoveryFailure,
)
from oxysmart_receiver.scanner import (
    Adapter,
    LifecycleEvent,
    LifecycleKind,
    PeripheralScanner,
    find_characteristic,
    list_adapters,
    matches_name,
)

from .fakes import Behaviour, FakeBackend, FakeCharacteristic, FakeService, notify_services


def _scanner(backend, **kwargs):
    return PeripheralScanner(
        scan_dwell=0.0,
        discover=backend.discover,
        client_factory=backend.client_factory,
        **kwargs,
    )


def _drain(queue):
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


@pytest.mark.parametrize(
    "name, expected",
    [
        ("OxySmartPro", True),
        ("OxySmart", True),
        ("My OxySmart 500", True),
        ("oxysmart", False),
        ("OXYSMART", False),
        ("Oxy Smart", False),
        (None, False),
    ],
)
def test_name_match_is_case_sensitive_substring(name, expected):
    assert matches_name(name, "OxySmart") is expected


def test_find_characteristic_requires_uuid_and_notify():
    services = [
        FakeService([FakeCharacteristic(NOTIFY_CHAR_UUID, ["read", "write"])]),
        FakeService([FakeCharacteristic("6e400002-b5a3-f393-e0a9-e50e24dcca9e")]),
    ]
    assert find_characteristic(services) is None

    wanted = FakeCharacteristic(NOTIFY_CHAR_UUID.upper(), ["read", "notify"])
    services.append(FakeService([wanted]))
    assert find_characteristic(services) is wanted


def test_list_adapters_prefers_explicit_names():
    assert list_adapters(["hci1", "hci0"]) == [Adapter("hci1"), Adapter("hci0")]


def test_list_adapters_non_linux_uses_default_radio():
    assert list_adapters(system="Darwin") == [Adapter(None)]
    assert list_adapters(system="Windows")[0].label == "default"


def test_list_adapters_reads_sysfs_in_index_order(tmp_path):
    for entry in ("hci10", "hci0", "hci2", "hci0:3585", "rfkill0"):
        (tmp_path / entry).mkdir()
    assert list_adapters(sysfs=tmp_path, system="Linux") == [
        Adapter("hci0"),
        Adapter("hci2"),
        Adapter("hci10"),
    ]


def test_list_adapters_without_sysfs_is_empty(tmp_path):
    assert list_adapters(sysfs=tmp_path / "missing", system="Linux") == []


def test_no_adapters_raises():
    backend = FakeBackend()
    with pytest.raises(NoAdapterError):
        asyncio.run(_scanner(backend).resolve([]))
    assert backend.discover_calls == []


def test_selects_first_fully_matching_candidate():
    backend = FakeBackend()
    backend.advertise("OxySmart-A", "00:00:00:00:00:0A", Behaviour(connect_error=BleakError("busy")))
    backend.advertise("OxySmart-B", "00:00:00:00:00:0B", Behaviour(services=[]))
    backend.advertise("OxySmart-C", "00:00:00:00:00:0C")
    backend.advertise("OxySmart-D", "00:00:00:00:00:0D")

    target = asyncio.run(_scanner(backend, connect_timeout=7.5).resolve([Adapter()]))

    assert target.candidate.name == "OxySmart-C"
    assert target.candidate.connected
    assert target.characteristic.uuid == NOTIFY_CHAR_UUID
    assert [c.address for c in backend.clients] == [
        "00:00:00:00:00:0A",
        "00:00:00:00:00:0B",
        "00:00:00:00:00:0C",
    ]
    assert all(c.connect_calls == 1 for c in backend.clients)
    assert backend.clients[0].kwargs["timeout"] == 7.5


def test_rejected_candidate_is_disconnected_but_target_stays_open():
    backend = FakeBackend()
    backend.advertise("OxySmart-B", "00:00:00:00:00:0B", Behaviour(services=notify_services(properties=("read",))))
    backend.advertise("OxySmart-C", "00:00:00:00:00:0C")

    target = asyncio.run(_scanner(backend).resolve([Adapter()]))

    rejected = backend.clients_for("00:00:00:00:00:0B")[0]
    assert rejected.disconnect_calls == 1
    assert not rejected.is_connected
    assert target.client.disconnect_calls == 0
    assert target.client.is_connected


def test_lifecycle_queue_collects_events_for_the_whole_adapter():
    backend = FakeBackend()
    backend.advertise("OxySmart-B", "B", Behaviour(services=[]))
    backend.advertise("OxySmart-C", "C")

    target = asyncio.run(_scanner(backend).resolve([Adapter()]))

    assert _drain(target.events) == [
        LifecycleEvent(LifecycleKind.CONNECTED, "B"),
        LifecycleEvent(LifecycleKind.DISCONNECTED, "B"),
        LifecycleEvent(LifecycleKind.CONNECTED, "C"),
    ]


def test_non_matching_names_are_never_connected():
    backend = FakeBackend()
    backend.advertise("oxysmart", "01")
    backend.advertise(None, "02")
    backend.advertise("Heart Strap", "03")

    with pytest.raises(NoMatchingPeripheralError):
        asyncio.run(_scanner(backend).resolve([Adapter()]))
    assert backend.clients == []


def test_link_that_never_comes_up_is_skipped():
    backend = FakeBackend()
    backend.advertise("OxySmart-A", "A", Behaviour(stays_disconnected=True))
    backend.advertise("OxySmart-B", "B")

    target = asyncio.run(_scanner(backend).resolve([Adapter()]))
    assert target.candidate.address == "B"


def test_connect_timeout_is_a_skipped_candidate():
    backend = FakeBackend()
    backend.advertise("OxySmart-A", "A", Behaviour(connect_error=asyncio.TimeoutError()))

    with pytest.raises(NoMatchingPeripheralError):
        asyncio.run(_scanner(backend).resolve([Adapter()]))


def test_no_peripherals_on_any_adapter():
    backend = FakeBackend()
    with pytest.raises(NoPeripheralsFoundError):
        asyncio.run(_scanner(backend).resolve([Adapter("hci0"), Adapter("hci1")]))
    assert [call["adapter"] for call in backend.discover_calls] == ["hci0", "hci1"]
    assert all(call["return_adv"] for call in backend.discover_calls)


def test_scan_failure_moves_on_to_next_adapter():
    backend = FakeBackend()
    backend.scan_errors["hci0"] = BleakError("org.bluez.Error.NotReady")
    backend.advertise("OxySmart-1", "11", adapter="hci1")

    target = asyncio.run(_scanner(backend).resolve([Adapter("hci0"), Adapter("hci1")]))

    assert target.adapter == Adapter("hci1")
    assert backend.clients[0].kwargs["adapter"] == "hci1"


def test_first_adapter_match_wins():
    backend = FakeBackend()
    backend.advertise("OxySmart-0", "00", adapter="hci0")
    backend.advertise("OxySmart-1", "11", adapter="hci1")

    target = asyncio.run(_scanner(backend).resolve([Adapter("hci0"), Adapter("hci1")]))

    assert target.candidate.address == "00"
    assert len(backend.discover_calls) == 1


def test_service_discovery_failure_aborts_attempt_and_releases():
    backend = FakeBackend()
    backend.advertise("OxySmart-A", "A", Behaviour(services_error=BleakError("no services")))
    backend.advertise("OxySmart-B", "B")

    with pytest.raises(ServiceDiscoveryFailure) as excinfo:
        asyncio.run(_scanner(backend).resolve([Adapter("hci0")]))

    assert excinfo.value.address == "A"
    assert "adapter=hci0" in str(excinfo.value)
    assert backend.clients_for("A")[0].disconnect_calls == 1
    assert backend.clients_for("B") == []


def test_default_scanner_dwells_two_seconds():
    backend = FakeBackend()
    scanner = PeripheralScanner(
        discover=backend.discover, client_factory=backend.client_factory
    )
    with pytest.raises(NoPeripheralsFoundError):
        asyncio.run(scanner.resolve([Adapter()]))
    assert [call["timeout"] for call in backend.discover_calls] == [2.0]


def test_unnamed_peripheral_is_matched_on_its_address():
    backend = FakeBackend()
    backend.advertise(None, "OxySmart-by-address")

    target = asyncio.run(_scanner(backend).resolve([Adapter()]))

    assert target.candidate.name is None
    assert target.candidate.label == "OxySmart-by-address"
