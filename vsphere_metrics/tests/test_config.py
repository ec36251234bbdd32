"""Tests for configuration loading."""

import pytest
import yaml


class TestAppConfig:
    def test_defaults_collect_everything(self):
        from vsphere_metrics.config import AppConfig
        config = AppConfig(vsphere={"server": "vcenter.test"})
        c = config.collection
        assert c.hosts == ["*"]
        assert c.datastores == ["*"]
        assert c.virtual_machines == ["*"]
        assert c.timeout_seconds is None
        assert config.vsphere.password_value() == ""

    def test_patterns_order(self):
        from vsphere_metrics.config import AppConfig
        from vsphere_metrics.models import ObjectKind
        config = AppConfig(
            vsphere={"server": "vcenter.test"},
            collection={"hosts": ["a", "b"], "datastores": [], "virtual_machines": ["c"]},
        )
        assert config.collection.patterns() == [
            (ObjectKind.HOST, "a"),
            (ObjectKind.HOST, "b"),
            (ObjectKind.VIRTUAL_MACHINE, "c"),
        ]

    def test_sample_config_loads(self, tmp_path):
        from vsphere_metrics.config import SAMPLE_CONFIG, AppConfig
        path = tmp_path / "vsphere.yaml"
        path.write_text(SAMPLE_CONFIG)

        config = AppConfig.from_yaml(path)
        assert config.vsphere.server == "vcenter.domain.com"
        assert config.vsphere.username == "root"
        assert config.vsphere.password_value() == "vmware"
        assert config.collection.hosts == ["*"]

    def test_empty_server_rejected(self):
        from pydantic import ValidationError
        from vsphere_metrics.config import AppConfig
        with pytest.raises(ValidationError):
            AppConfig(vsphere={"server": "  "})

    def test_invalid_timeout_rejected(self):
        from pydantic import ValidationError
        from vsphere_metrics.config import AppConfig
        with pytest.raises(ValidationError):
            AppConfig(vsphere={"server": "vc"}, collection={"timeout_seconds": 0})

    def test_password_from_env(self, monkeypatch):
        from vsphere_metrics.config import AppConfig
        monkeypatch.setenv("VC_PASSWORD", "from-env")
        config = AppConfig(vsphere={"server": "vc", "password_env": "VC_PASSWORD"})
        assert config.vsphere.password_value() == "from-env"

    def test_explicit_password_wins_over_env(self, monkeypatch):
        from vsphere_metrics.config import AppConfig
        monkeypatch.setenv("VC_PASSWORD", "from-env")
        config = AppConfig(vsphere={"server": "vc", "password": "inline", "password_env": "VC_PASSWORD"})
        assert config.vsphere.password_value() == "inline"

    def test_from_env_and_args(self, monkeypatch):
        from vsphere_metrics.config import AppConfig
        monkeypatch.setenv("VSPHERE_SERVER", "vc-env")
        monkeypatch.setenv("VSPHERE_USERNAME", "monitor")
        monkeypatch.setenv("VSPHERE_PASSWORD", "pw")
        monkeypatch.setenv("VSPHERE_INSECURE", "true")

        config = AppConfig.from_env_and_args(collection={"hosts": ["esxi*"]})
        assert config.vsphere.server == "vc-env"
        assert config.vsphere.username == "monitor"
        assert config.vsphere.password_value() == "pw"
        assert config.vsphere.insecure
        assert config.collection.hosts == ["esxi*"]

    def test_to_yaml_redacts_password(self, tmp_path):
        from vsphere_metrics.config import AppConfig
        path = tmp_path / "out.yaml"
        AppConfig(vsphere={"server": "vc", "password": "secret"}).to_yaml(path)

        data = yaml.safe_load(path.read_text())
        assert data["vsphere"]["password"] == "***REDACTED***"
        assert "secret" not in path.read_text()
