"""Tests for the layered config store."""
import json

from nftmarket.config_store import ConfigStore, read_config_file
from nftmarket.settings import Settings


class TestReadConfigFile:
    """YAML/JSON config files."""

    def test_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("listing_cache_ttl_seconds: 3.5\nledger_rpc_url: https://ledger.test\n")
        assert read_config_file(path) == {"listing_cache_ttl_seconds": 3.5, "ledger_rpc_url": "https://ledger.test"}

    def test_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"offer_poll_max_attempts": 4}))
        assert read_config_file(path) == {"offer_poll_max_attempts": 4}

    def test_missing_or_invalid(self, tmp_path):
        assert read_config_file(None) == {}
        assert read_config_file(tmp_path / "absent.yaml") == {}
        broken = tmp_path / "broken.yaml"
        broken.write_text("key: [unclosed")
        assert read_config_file(broken) == {}
        listed = tmp_path / "list.yaml"
        listed.write_text("- a\n- b\n")
        assert read_config_file(listed) == {}


class TestConfigStore:
    """Precedence: pushed overrides > config file > environment."""

    def test_file_over_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LEDGER_RPC_URL", "https://from-env.test")
        monkeypatch.setenv("PAY_DESTINATION", "rFromEnv")
        path = tmp_path / "config.yaml"
        path.write_text("ledger_rpc_url: https://from-file.test\n")

        store = ConfigStore(Settings, str(path))
        store.load_initial()

        assert store.get_settings().ledger_rpc_url == "https://from-file.test"
        assert store.get_settings().pay_destination == "rFromEnv"

    def test_overrides_and_clear(self, tmp_path):
        store = ConfigStore(Settings, str(tmp_path / "none.yaml"))
        store.update({"listing_cache_ttl_seconds": 1.0})
        assert store.get_settings().listing_cache_ttl_seconds == 1.0

        store.clear_overrides()
        assert store.get_settings().listing_cache_ttl_seconds == 10.0

    def test_invalid_update_keeps_previous(self, tmp_path):
        store = ConfigStore(Settings, str(tmp_path / "none.yaml"))
        store.update({"offer_poll_max_attempts": 5})
        store.update({"offer_poll_max_attempts": "many"})
        assert store.get_settings().offer_poll_max_attempts == 5

    def test_reload_from_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("offer_poll_interval_seconds: 1.0\n")
        store = ConfigStore(Settings, str(path))
        store.load_initial()

        path.write_text("offer_poll_interval_seconds: 0.5\n")
        store.reload_from_file()

        assert store.get_settings().offer_poll_interval_seconds == 0.5

    def test_rlusd_issuer_falls_back_to_destination(self, tmp_path):
        store = ConfigStore(Settings, str(tmp_path / "none.yaml"))
        store.update({"pay_destination": "rDest", "rlusd_issuer": ""})
        assert store.get_settings().rlusd_issuer_account == "rDest"
        store.update({"rlusd_issuer": "rIssuer"})
        assert store.get_settings().rlusd_issuer_account == "rIssuer"
