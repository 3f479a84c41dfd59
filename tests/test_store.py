"""Tests for the printer, mapping and job stores."""

import asyncio
import json

import pytest

from kitchen_print.models import (
    CategoryPrinterMapping,
    JobStatus,
    PrinterConfig,
    PrinterType,
    PrintJob,
    PrintJobItem,
    Transport,
)
from kitchen_print.store import (
    DuplicateRecordError,
    JobStore,
    MappingStore,
    PrinterStore,
    StoreValidationError,
)


def printer(ip="192.168.1.20", port=9100, **kwargs) -> PrinterConfig:
    return PrinterConfig(name=kwargs.pop("name", "Grill"), ip_address=ip, port=port, **kwargs)


class TestPrinterStore:
    @pytest.mark.asyncio
    async def test_default_transport_follows_type(self):
        assert printer().transport == Transport.NETWORK
        assert printer(type="laser").transport == Transport.SPOOLER
        assert printer(type=PrinterType.INKJET, transport="network").transport == Transport.NETWORK

    @pytest.mark.asyncio
    async def test_active_endpoint_must_be_unique(self):
        store = PrinterStore()
        await store.add(printer())

        with pytest.raises(DuplicateRecordError):
            await store.add(printer(name="Grill 2"))

        # Same address is fine when inactive, on another port or another transport
        await store.add(printer(name="Old Grill", is_active=False))
        await store.add(printer(name="Bar", port=9101))
        await store.add(printer(name="Office", type="laser"))

        assert await store.count() == 4
        assert len(await store.list_active()) == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ip", ["", "192.168.1", "300.1.1.1", "printer.local"])
    async def test_invalid_ip_rejected(self, ip):
        with pytest.raises(StoreValidationError, match="Invalid IP"):
            await PrinterStore().add(printer(ip=ip))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("port", [0, 65536, -1])
    async def test_invalid_port_rejected(self, port):
        with pytest.raises(StoreValidationError, match="Port"):
            await PrinterStore().add(printer(port=port))

    @pytest.mark.asyncio
    async def test_failed_update_leaves_record_untouched(self):
        store = PrinterStore()
        first = await store.add(printer())
        second = await store.add(printer(name="Bar", ip="192.168.1.21"))

        def clash(p):
            p.ip_address = first.ip_address

        with pytest.raises(DuplicateRecordError):
            await store.update(second.id, clash)

        assert (await store.get(second.id)).ip_address == "192.168.1.21"

    @pytest.mark.asyncio
    async def test_reactivating_into_a_clash_is_rejected(self):
        store = PrinterStore()
        await store.add(printer())
        old = await store.add(printer(name="Old Grill", is_active=False))

        with pytest.raises(DuplicateRecordError):
            await store.update(old.id, lambda p: setattr(p, "is_active", True))

    @pytest.mark.asyncio
    async def test_concurrent_updates_to_different_fields_both_survive(self):
        store = PrinterStore()
        created = await store.add(printer())

        await asyncio.gather(
            store.update(created.id, lambda p: setattr(p, "name", "Hot Line")),
            store.update(created.id, lambda p: setattr(p, "categories", ["mains"])),
        )

        stored = await store.get(created.id)
        assert stored.name == "Hot Line"
        assert stored.categories == ["mains"]

    @pytest.mark.asyncio
    async def test_update_missing_record(self):
        assert await PrinterStore().update("nope", lambda p: None) is None

    @pytest.mark.asyncio
    async def test_persists_and_reloads(self, tmp_path):
        path = tmp_path / "printers.json"
        store = PrinterStore(path)
        created = await store.add(printer(categories=["mains"]))
        await store.update(created.id, lambda p: setattr(p, "name", "Hot Line"))

        on_disk = json.loads(path.read_text())
        assert on_disk[0]["name"] == "Hot Line"
        assert on_disk[0]["transport"] == "network"

        reloaded = await PrinterStore(path).get(created.id)
        assert reloaded.name == "Hot Line"
        assert reloaded.categories == ["mains"]
        assert reloaded.created_at == created.created_at

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field, value", [
        ("transport", None),
        ("type", None),
        ("type", "thermal"),
        ("name", None),
        ("is_active", None),
    ])
    async def test_update_to_invalid_field_rejected(self, field, value):
        store = PrinterStore()
        created = await store.add(printer())

        with pytest.raises(StoreValidationError):
            await store.update(created.id, lambda p: setattr(p, field, value))

        stored = await store.get(created.id)
        assert stored.transport == Transport.NETWORK
        assert stored.to_dict()["type"] == "thermal"

    @pytest.mark.asyncio
    async def test_failed_write_leaves_memory_untouched(self, tmp_path, monkeypatch):
        path = tmp_path / "printers.json"
        store = PrinterStore(path)
        kept = await store.add(printer(name="Grill"))

        def disk_full(*args, **kwargs):
            raise OSError("No space left on device")

        monkeypatch.setattr("kitchen_print.store.os.replace", disk_full)

        with pytest.raises(OSError):
            await store.add(printer(name="Bar", port=9101))
        with pytest.raises(OSError):
            await store.update(kept.id, lambda p: setattr(p, "name", "Hot Line"))
        with pytest.raises(OSError):
            await store.delete(kept.id)

        assert [p.name for p in await store.list_all()] == ["Grill"]
        assert json.loads(path.read_text())[0]["name"] == "Grill"
        assert list(tmp_path.glob("*.tmp")) == []


class TestMappingStore:
    @pytest.mark.asyncio
    async def test_duplicate_pair_rejected(self):
        store = MappingStore()
        await store.add(CategoryPrinterMapping(category_id="mains", printer_id="grill"))

        with pytest.raises(DuplicateRecordError):
            await store.add(CategoryPrinterMapping(category_id="mains", printer_id="grill", priority=2))

    @pytest.mark.asyncio
    async def test_required_fields(self):
        with pytest.raises(StoreValidationError):
            await MappingStore().add(CategoryPrinterMapping(category_id="", printer_id="grill"))

    @pytest.mark.asyncio
    async def test_replace_all_keeps_existing_ids(self):
        store = MappingStore()
        kept = await store.add(CategoryPrinterMapping(category_id="mains", printer_id="grill"))
        await store.add(CategoryPrinterMapping(category_id="drinks", printer_id="bar"))

        result = await store.replace_all([
            {"category_id": "mains", "printer_id": "grill", "priority": 2},
            {"category_id": "desserts", "printer_id": "pastry"},
        ])

        assert [m.pair for m in result] == [("mains", "grill"), ("desserts", "pastry")]
        assert result[0].id == kept.id
        assert result[0].priority == 2
        assert result[1].priority == 1
        assert result[1].is_active is True
        assert await store.for_category("drinks") == []

    @pytest.mark.asyncio
    async def test_replace_all_rejects_duplicates_atomically(self):
        store = MappingStore()
        await store.add(CategoryPrinterMapping(category_id="mains", printer_id="grill"))

        with pytest.raises(DuplicateRecordError):
            await store.replace_all([
                {"category_id": "drinks", "printer_id": "bar"},
                {"category_id": "drinks", "printer_id": "bar"},
            ])

        assert [m.pair for m in await store.list_all()] == [("mains", "grill")]


class TestJobStore:
    @pytest.mark.asyncio
    async def test_batch_insert_and_counts(self, tmp_path):
        path = tmp_path / "print-jobs.json"
        store = JobStore(path)
        batch = [
            PrintJob(order_id="o1", printer_id=f"p{n}", items=[PrintJobItem(id="i", name="Tea", quantity=1)])
            for n in range(3)
        ]

        await store.add_many(batch)
        await store.update(batch[0].id, lambda j: setattr(j, "status", JobStatus.FAILED))

        counts = await store.count_by_status()
        assert counts == {"pending": 2, "printing": 0, "completed": 0, "failed": 1}

        reloaded = JobStore(path)
        assert await reloaded.count() == 3
        job = await reloaded.get(batch[0].id)
        assert job.status == JobStatus.FAILED
        assert job.items[0].name == "Tea"
