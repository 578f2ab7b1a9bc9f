import json

from recon_phantom.config.config_manager import ConfigManager, ConfigSchema, create_default_config


class TestDefaults:
    def test_defaults_are_valid(self):
        config = ConfigManager()
        assert config.validate()
        assert config.errors() == []

    def test_dot_notation(self):
        config = ConfigManager()
        assert config.get("scan.timeout_ms") == 3000
        assert config.get("scan.timing_template") is None
        assert config.get("discovery.methods") == ["ping"]
        assert config.get("scan.missing", "fallback") == "fallback"

    def test_defaults_are_fresh_copies(self):
        first = ConfigSchema.get_defaults()
        first["scan"]["timeout_ms"] = 1
        assert ConfigSchema.get_defaults()["scan"]["timeout_ms"] == 3000


class TestLoad:
    def test_missing_file(self, tmp_path):
        assert not ConfigManager(str(tmp_path / "absent.json")).load()

    def test_partial_file_is_merged(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"scan": {"concurrency": 25, "timing_template": "polite"}}))
        config = ConfigManager(str(path))

        assert config.load()
        assert config.get("scan.concurrency") == 25
        assert config.get("scan.timing_template") == "polite"
        assert config.get("scan.timeout_ms") == 3000

    def test_invalid_values_fall_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"scan": {"concurrency": 0}}))
        config = ConfigManager(str(path))

        assert not config.load()
        assert config.get("scan.concurrency") == 10

    def test_unknown_timing_template_rejected(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"scan": {"timing_template": "ludicrous"}}))
        assert not ConfigManager(str(path)).load()

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        assert not ConfigManager(str(path)).load()

    def test_non_object(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")
        assert not ConfigManager(str(path)).load()


def test_errors_name_the_offending_key():
    config = ConfigManager()
    config.set("discovery.methods", ["carrier-pigeon"])
    errors = config.errors()
    assert len(errors) == 1
    assert errors[0].startswith("discovery.methods.0:")
    assert not config.validate()


def test_set_and_save_roundtrip(tmp_path):
    path = tmp_path / "saved.json"
    config = ConfigManager(str(path))
    config.set("scripts.concurrency", 5)
    assert config.modified
    assert config.save()
    assert not config.modified

    reloaded = ConfigManager(str(path))
    assert reloaded.load()
    assert reloaded.get("scripts.concurrency") == 5


def test_create_default_config(tmp_path):
    path = tmp_path / "recon_config.json"
    assert create_default_config(str(path))
    assert json.loads(path.read_text())["version"] == "1.0.0"


class TestEnvironment:
    def test_env_overrides_file_values(self, monkeypatch):
        monkeypatch.setenv("RECON_SCAN_TIMEOUT_MS", "1500")
        assert ConfigManager().get("scan.timeout_ms") == 1500

    def test_env_value_parsing(self, monkeypatch):
        config = ConfigManager()
        monkeypatch.setenv("RECON_GENERAL_COLORS_ENABLED", "no")
        monkeypatch.setenv("RECON_SCAN_RATE_LIMIT", "2.5")
        monkeypatch.setenv("RECON_DISCOVERY_METHODS", "ping, http-probe")
        monkeypatch.setenv("RECON_SCAN_RETRIES", "1")

        assert config.get("general.colors_enabled") is False
        assert config.get("scan.rate_limit") == 2.5
        assert config.get("discovery.methods") == ["ping", "http-probe"]
        assert config.get("scan.retries") == 1

    def test_export_for_cli(self, monkeypatch):
        monkeypatch.setenv("RECON_SCAN_CONCURRENCY", "42")
        exported = ConfigManager().export_for_cli()
        assert exported["concurrency"] == 42
        assert exported["discovery_methods"] == ["ping"]

    def test_single_item_list_stays_a_list(self, monkeypatch):
        monkeypatch.setenv("RECON_DISCOVERY_METHODS", "http-probe")
        monkeypatch.setenv("RECON_DNS_SERVERS", "https://doh.test/resolve")
        config = ConfigManager()

        assert config.get("discovery.methods") == ["http-probe"]
        assert config.get("dns.servers") == ["https://doh.test/resolve"]

    def test_values_typed_by_schema(self, monkeypatch):
        monkeypatch.setenv("RECON_SCAN_TIMING_TEMPLATE", "null")
        monkeypatch.setenv("RECON_HTTP_VERIFY_TLS", "1")
        monkeypatch.setenv("RECON_GENERAL_LOG_LEVEL", "DEBUG")
        config = ConfigManager()

        assert config.get("scan.timing_template") is None
        assert config.get("http.verify_tls") is True
        assert config.get("general.log_level") == "DEBUG"

    def test_invalid_env_values_are_ignored(self, monkeypatch, caplog):
        monkeypatch.setenv("RECON_DISCOVERY_METHODS", "http")
        monkeypatch.setenv("RECON_SCAN_CONCURRENCY", "0")
        config = ConfigManager()

        assert config.get("discovery.methods") == ["ping"]
        assert config.get("scan.concurrency") == 10
        assert "RECON_DISCOVERY_METHODS" in caplog.text
