from pathlib import Path

import pytest

from cloudproxy.config import RunConfig, _deep_merge, load_defaults, resolve_token
from cloudproxy.exceptions import (
    ConfigurationError,
    PortSpecError,
    SafetyCapExceededError,
    TemplateError,
)

pytestmark = [pytest.mark.unit]


class TestValidate:
    def test_defaults_with_command(self):
        RunConfig(command="nmap {{address}}").validate()

    def test_safety_cap(self):
        with pytest.raises(SafetyCapExceededError) as exc:
            RunConfig(count=51, command="uptime").validate()
        assert exc.value.count == 51
        assert exc.value.cap == 50

    def test_cap_is_inclusive(self):
        RunConfig(count=50, command="uptime").validate()

    def test_force_bypasses_cap(self):
        RunConfig(count=120, command="uptime", force=True).validate()

    def test_count_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            RunConfig(count=0, command="uptime").validate()

    def test_command_required(self):
        with pytest.raises(ConfigurationError, match="--cmd"):
            RunConfig(command="  ").validate()

    def test_bad_command_template(self):
        with pytest.raises(TemplateError):
            RunConfig(command="nmap {{target}}").validate()

    def test_bad_output_template(self):
        with pytest.raises(TemplateError):
            RunConfig(command="uptime", output="out-{{idx}}.xml").validate()

    @pytest.mark.parametrize("output", ["scan-{{address}}.xml", "scan-{{ip}}.xml", "{{ports}}.xml"])
    def test_output_limited_to_index_and_name(self, output):
        with pytest.raises(TemplateError, match="--out may only use"):
            RunConfig(command="uptime", output=output).validate()

    def test_output_with_name_and_index(self):
        RunConfig(command="uptime", output="res/{{name}}-{{.index}}.xml").validate()

    def test_ports_must_cover_every_droplet(self):
        with pytest.raises(PortSpecError):
            RunConfig(count=5, command="nmap -p {{ports}}", ports="80,443").validate()

    def test_negative_intervals(self):
        with pytest.raises(ConfigurationError):
            RunConfig(command="uptime", poll_interval=-1).validate()

    def test_proxy_needs_no_command(self):
        RunConfig(proxy=True).validate()

    def test_proxy_ports_in_range(self):
        with pytest.raises(ConfigurationError, match="out of range"):
            RunConfig(count=10, proxy=True, proxy_start_port=65530).validate()

    def test_distribute_ports(self):
        assert not RunConfig().distribute_ports
        assert RunConfig(ports="1-100").distribute_ports


class TestResolveToken:
    def test_explicit_wins(self):
        assert resolve_token("flag", {"DOTOKEN": "env"}) == "flag"

    def test_dotoken_before_digitalocean_token(self):
        env = {"DOTOKEN": "a", "DIGITALOCEAN_TOKEN": "b"}
        assert resolve_token(None, env) == "a"

    def test_digitalocean_token(self):
        assert resolve_token("", {"DIGITALOCEAN_TOKEN": "b"}) == "b"

    def test_missing(self):
        with pytest.raises(ConfigurationError, match="--token"):
            resolve_token(None, {})


class TestDeepMerge:
    def test_nested_merge(self):
        base = {"defaults": {"count": 5, "regions": "*"}}
        override = {"defaults": {"count": 10}}
        assert _deep_merge(base, override) == {"defaults": {"count": 10, "regions": "*"}}

    def test_empty_override(self):
        assert _deep_merge({"a": 1}, {}) == {"a": 1}


class TestLoadDefaults:
    def test_no_files(self, tmp_path: Path):
        assert load_defaults(project_dir=tmp_path, global_path=tmp_path / "missing.toml") == {}

    def test_project_overrides_global(self, tmp_path: Path):
        global_toml = tmp_path / "defaults.toml"
        global_toml.write_text('[defaults]\ncount = 3\nregions = "nyc1"\n')
        project = tmp_path / "project"
        project.mkdir()
        (project / "cloud-proxy.toml").write_text("[defaults]\ncount = 8\n")

        result = load_defaults(project_dir=project, global_path=global_toml)
        assert result == {"count": 8, "regions": "nyc1"}

    def test_packages_as_string_or_list(self, tmp_path: Path):
        (tmp_path / "cloud-proxy.toml").write_text('[defaults]\npackages = "nmap, masscan"\n')
        result = load_defaults(project_dir=tmp_path, global_path=tmp_path / "missing.toml")
        assert result["packages"] == ("nmap", "masscan")

        (tmp_path / "cloud-proxy.toml").write_text('[defaults]\npackages = ["zmap"]\n')
        result = load_defaults(project_dir=tmp_path, global_path=tmp_path / "missing.toml")
        assert result["packages"] == ("zmap",)

    def test_unknown_key(self, tmp_path: Path):
        (tmp_path / "cloud-proxy.toml").write_text("[defaults]\ncuont = 3\n")
        with pytest.raises(ConfigurationError, match="cuont"):
            load_defaults(project_dir=tmp_path, global_path=tmp_path / "missing.toml")

    def test_invalid_toml(self, tmp_path: Path):
        (tmp_path / "cloud-proxy.toml").write_text("[defaults\n")
        with pytest.raises(ConfigurationError, match="Invalid config file"):
            load_defaults(project_dir=tmp_path, global_path=tmp_path / "missing.toml")
