"""Tests for command line parsing and the config-file pre-pass."""

import pytest
from docker.types import Mount, Ulimit

from docker_cluster.arguments import expand_config_files, load_configuration, split_one_off
from docker_cluster.errors import ConfigError
from docker_cluster.models import HealthSpec, PortMapping, PortSpec


def test_defaults(test_settings):
    config = load_configuration(["--name", "web", "--image", "app:v2"], test_settings)

    assert config.count == 1
    assert config.timeout == 120
    assert config.force is False
    assert config.one_off is False
    assert config.healthcheck is None


def test_full_cluster_invocation(test_settings):
    """Test that every orchestrator flag lands in the configuration."""
    config = load_configuration(
        [
            "--name", "web",
            "--count", "3",
            "--image", "app:v2",
            "--port", "80:8000",
            "--port", "443",
            "--hostname", "example.com",
            "--healthcheck", "http://localhost/health",
            "--timeout", "30",
            "--command", "bundle exec puma -C 'config/puma.rb'",
            "--force",
        ],
        test_settings,
    )

    assert config.count == 3
    assert config.ports == (PortSpec(container_port=80, base_host_port=8000), PortSpec(container_port=443))
    assert config.hostname == "example.com"
    assert config.healthcheck == HealthSpec(kind="url", value="http://localhost/health")
    assert config.timeout == 30
    assert config.command == ("bundle", "exec", "puma", "-C", "config/puma.rb")
    assert config.force is True


def test_unrecognized_flags_pass_through(test_settings):
    """Test that engine flags mixed with orchestrator flags reach the run options."""
    config = load_configuration(
        ["--name", "web", "-e", "RACK_ENV=production", "--image", "app:v2", "--network", "backend"], test_settings
    )

    assert config.run_options.engine_kwargs == {"environment": ["RACK_ENV=production"], "network": "backend"}


def test_engine_health_and_resource_flags_pass_through(test_settings):
    """Test that docker run flags beyond the common ones still reach every instance."""
    config = load_configuration(
        [
            "--name", "web", "--image", "app:v2",
            "--health-cmd", "curl -f localhost",
            "--expose", "80",
            "--ulimit", "nofile=1024",
            "--mount", "type=tmpfs,dst=/x",
        ],
        test_settings,
    )

    kwargs = config.run_options.engine_kwargs
    assert kwargs["healthcheck"] == {"test": ["CMD-SHELL", "curl -f localhost"]}
    assert kwargs["ports"] == {"80/tcp": []}
    assert kwargs["ulimits"] == [Ulimit(name="nofile", soft=1024, hard=1024)]
    assert kwargs["mounts"] == [Mount("/x", None, type="tmpfs")]
    assert config.healthcheck is None


def test_missing_name(test_settings):
    with pytest.raises(ConfigError):
        load_configuration(["--image", "app:v2"], test_settings)


def test_invalid_port(test_settings):
    with pytest.raises(ConfigError):
        load_configuration(["--name", "web", "--port", "http"], test_settings)


def test_invalid_count(test_settings):
    with pytest.raises(ConfigError):
        load_configuration(["--name", "web", "--count", "-1"], test_settings)


def test_unsupported_engine_flag(test_settings):
    with pytest.raises(ConfigError):
        load_configuration(["--name", "web", "--bogus-flag"], test_settings)


@pytest.mark.parametrize("flag", [["--publish", "80:80"], ["-p", "8080:80"], ["-h", "box"]])
def test_slot_identity_flags_rejected_for_cluster(test_settings, flag):
    """Test that engine flags clashing with slot naming are refused outside one-off mode."""
    with pytest.raises(ConfigError):
        load_configuration(["--name", "web", "--image", "app:v2", *flag], test_settings)


def test_one_off_passes_trailing_flags_through(test_settings):
    """Test that --name/--port/--hostname after --one-off go to the launched instance."""
    config = load_configuration(
        [
            "--image", "app:v2", "--port", "80:8000",
            "--one-off", "--name", "migrate", "--port", "9000:80", "--hostname", "job.local", "rake", "db:migrate",
        ],
        test_settings,
    )

    assert config.one_off is True
    assert config.name is None
    assert config.run_options.name == "migrate"
    assert config.run_options.hostname == "job.local"
    assert config.run_options.publish == (PortMapping(host_port=9000, container_port=80),)
    assert config.command == ("rake", "db:migrate")


def test_split_one_off():
    assert split_one_off(["--name", "x"]) == (["--name", "x"], None)
    assert split_one_off(["--name", "x", "--one-off", "--config", "y"]) == (["--name", "x"], ["--config", "y"])


def test_arguments_file_is_expanded_in_place(tmp_path):
    """Test that --config files contribute their arguments where they appear."""
    config_file = tmp_path / "web.args"
    config_file.write_text("# web tier\n--port 80:8000\n--env 'GREETING=hello world'\n\n--count 2\n")

    tokens = expand_config_files(["--name", "web", "--config", str(config_file), "--count", "3"])

    assert tokens == ["--name", "web", "--port", "80:8000", "--env", "GREETING=hello world", "--count", "2", "--count", "3"]


def test_later_flags_override_config_file(tmp_path, test_settings):
    config_file = tmp_path / "web.args"
    config_file.write_text("--count 2\n--timeout 60\n")

    config = load_configuration(["--name", "web", f"--config={config_file}", "--count", "4"], test_settings)

    assert config.count == 4
    assert config.timeout == 60


def test_yaml_config_with_nested_include(tmp_path, test_settings):
    """Test YAML option files and recursive inclusion."""
    (tmp_path / "base.args").write_text("--hostname example.com\n")
    (tmp_path / "web.yml").write_text(
        f"config: {tmp_path / 'base.args'}\n"
        "name: web\n"
        "count: 2\n"
        "port: ['80:8000', '443:8443']\n"
        "force: true\n"
        "env: [A=1]\n"
        "args: ['--restart', 'unless-stopped']\n"
    )

    config = load_configuration(["--config", str(tmp_path / "web.yml"), "--image", "app:v2"], test_settings)

    assert config.name == "web"
    assert config.count == 2
    assert config.hostname == "example.com"
    assert len(config.ports) == 2
    assert config.force is True
    assert config.run_options.engine_kwargs["environment"] == ["A=1"]
    assert config.run_options.engine_kwargs["restart_policy"] == {"Name": "unless-stopped"}


def test_config_cycle_is_rejected(tmp_path):
    (tmp_path / "a.args").write_text(f"--config {tmp_path / 'b.args'}\n")
    (tmp_path / "b.args").write_text(f"--config {tmp_path / 'a.args'}\n")

    with pytest.raises(ConfigError, match="includes itself"):
        expand_config_files(["--config", str(tmp_path / "a.args")])


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigError):
        expand_config_files(["--config", str(tmp_path / "nope.args")])


def test_config_flag_without_path():
    with pytest.raises(ConfigError):
        expand_config_files(["--config"])


def test_yaml_config_must_be_mapping(tmp_path):
    (tmp_path / "bad.yaml").write_text("- just\n- a list\n")

    with pytest.raises(ConfigError):
        expand_config_files(["--config", str(tmp_path / "bad.yaml")])
