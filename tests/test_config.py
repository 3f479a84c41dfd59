"""Tests for configuration loading, startup validation and service setup."""

import socket

import pytest
import yaml

from kitchen_print.backends.simulated import SimulatedBackend
from kitchen_print.config import (
    build_service,
    get_dispatch_config,
    get_server_config,
    load_config,
    seed_from_config,
    setup_backends,
)
from kitchen_print.main import apply_overrides, build_parser
from kitchen_print.models import Transport
from kitchen_print.startup import check_data_dir, check_port_available, validate_config
from kitchen_print.store import JobStore
from kitchen_print.tracker import JobTracker

SAMPLE_CONFIG = {
    "server": {"port": 5055},
    "dispatch": {"default_backend": "network", "max_retries": 5},
    "backends": {
        "network": {"connect_timeout_sec": 2},
        "simulated": {"min_delay_sec": 0, "max_delay_sec": 0},
    },
    "printers": [
        {"id": "bar", "name": "Bar", "ip_address": "10.0.0.5", "categories": ["drinks"]},
        {"id": "office", "name": "Office", "ip_address": "10.0.0.6", "type": "laser"},
    ],
    "mappings": [
        {"category_id": "drinks", "printer_id": "bar", "priority": 1},
    ],
}


class TestLoadConfig:
    def test_explicit_path(self, tmp_path):
        path = tmp_path / "kitchen.yaml"
        path.write_text(yaml.safe_dump(SAMPLE_CONFIG))

        config = load_config(str(path))
        assert config["server"]["port"] == 5055
        assert config["printers"][0]["id"] == "bar"

    def test_env_variable(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text("server:\n  port: 6000\n")
        monkeypatch.setenv("CONFIG_FILE", str(path))

        assert load_config()["server"]["port"] == 6000

    def test_empty_file_gives_empty_config(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(str(path)) == {}

    def test_defaults(self):
        assert get_server_config({}) == {
            "host": "0.0.0.0",
            "port": 5001,
            "debug": False,
            "cors_origins": None,
        }
        assert get_dispatch_config({}) == {
            "default_backend": "simulated",
            "max_retries": 3,
            "max_pending": 100,
        }


class TestValidateConfig:
    def test_sample_config_is_valid(self):
        errors, warnings = validate_config(SAMPLE_CONFIG)
        assert errors == []
        assert warnings == []

    def test_errors(self):
        config = {
            "server": {"port": 70000},
            "dispatch": {"default_backend": "carrier-pigeon", "max_retries": -1},
            "printers": [
                {"id": "a", "ip_address": "10.0.0.1"},
                {"id": "a", "ip_address": "10.0.0.2"},
                {"ip_address": "not-an-ip"},
            ],
        }
        errors, _ = validate_config(config)

        assert any("Invalid port" in e for e in errors)
        assert any("carrier-pigeon" in e for e in errors)
        assert any("max_retries" in e for e in errors)
        assert any("Duplicate printer ID" in e for e in errors)
        assert any("no 'id'" in e for e in errors)
        assert any("invalid ip_address" in e for e in errors)

    def test_warnings(self):
        config = {
            "server": {"port": 80},
            "printers": [{"id": "bar", "ip_address": "10.0.0.5"}],
            "mappings": [{"category_id": "mains", "printer_id": "grill"}],
        }
        errors, warnings = validate_config(config)

        assert errors == []
        assert any("privileged" in w for w in warnings)
        assert any("unknown printer 'grill'" in w for w in warnings)

    def test_no_printers_is_only_a_warning(self):
        errors, warnings = validate_config({})
        assert errors == []
        assert any("No printers" in w for w in warnings)


class TestSetupBackends:
    def test_all_backends_registered_with_their_sections(self):
        registry = setup_backends(SAMPLE_CONFIG, JobTracker(JobStore()))

        assert registry.names() == ["simulated", "network", "serial", "spooler"]
        assert registry.default == "network"
        assert registry.get("network").connect_timeout_sec == 2.0
        assert registry.get("simulated").max_delay_sec == 0.0

    def test_unknown_default_falls_back_to_simulated(self):
        registry = setup_backends(
            {"dispatch": {"default_backend": "carrier-pigeon"}}, JobTracker(JobStore())
        )
        assert registry.default == "simulated"
        assert isinstance(registry.get(), SimulatedBackend)


class TestBuildService:
    @pytest.mark.asyncio
    async def test_seeding(self):
        service = build_service(SAMPLE_CONFIG)
        await seed_from_config(service, SAMPLE_CONFIG)

        office = await service.printers.get("office")
        assert office.transport == Transport.SPOOLER
        assert [m.pair for m in await service.mappings.list_all()] == [("drinks", "bar")]
        assert service.tracker.max_retries == 5

    @pytest.mark.asyncio
    async def test_bad_seed_entries_are_skipped(self):
        config = {
            "printers": [
                {"id": "ok", "name": "OK", "ip_address": "10.0.0.5"},
                {"id": "bad", "name": "Bad", "ip_address": "nope"},
                {"id": "clash", "name": "Clash", "ip_address": "10.0.0.5"},
            ],
        }
        service = build_service(config)
        await seed_from_config(service, config)

        assert [p.id for p in await service.printers.list_all()] == ["ok"]

    @pytest.mark.asyncio
    async def test_seeding_does_not_overwrite_saved_data(self, tmp_path):
        config = {**SAMPLE_CONFIG, "storage": {"data_dir": str(tmp_path)}}

        service = build_service(config)
        await seed_from_config(service, config)
        await service.printers.update("bar", lambda p: setattr(p, "name", "Renamed Bar"))

        restarted = build_service(config)
        await seed_from_config(restarted, config)

        assert (tmp_path / "printers.json").exists()
        assert (await restarted.printers.get("bar")).name == "Renamed Bar"
        assert await restarted.printers.count() == 2


class TestCommandLine:
    def test_overrides(self):
        args = build_parser().parse_args([
            "--port", "6010", "--backend", "serial", "--data-dir", "/tmp/kitchen", "--debug",
        ])
        config = apply_overrides({"server": {"host": "127.0.0.1"}}, args)

        assert config["server"] == {"host": "127.0.0.1", "port": 6010, "debug": True}
        assert config["dispatch"]["default_backend"] == "serial"
        assert config["storage"]["data_dir"] == "/tmp/kitchen"

    def test_unknown_backend_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--backend", "fax"])

    def test_missing_explicit_config(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))


class TestStartupChecks:
    def test_data_dir(self, tmp_path):
        assert check_data_dir(None) is None
        assert check_data_dir(str(tmp_path / "data")) is None

        not_a_dir = tmp_path / "file.json"
        not_a_dir.write_text("[]")
        assert "not a directory" in check_data_dir(str(not_a_dir))

    def test_port_in_use(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
            taken.bind(("127.0.0.1", 0))
            taken.listen()
            port = taken.getsockname()[1]

            assert check_port_available("127.0.0.1", port) is not None
