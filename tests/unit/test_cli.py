"""Tests for the swarmctl command line and configuration defaults."""

from unittest.mock import MagicMock, patch

import pytest

from swarmctl import cli
from swarmctl.config import SwarmDefaults
from swarmctl.errors import DrainTimeout, NoSuitableManager, TransportError
from swarmctl.execution import LocalTransport, SSHTransport

MANIFEST = """\
nodes:
  - hostname: m1
    public_address: 203.0.113.11
    private_address: 10.0.0.11
    tags: {role: manager}
  - hostname: m2
    public_address: 203.0.113.12
    private_address: 10.0.0.12
    tags: {role: manager}
  - hostname: m3
    public_address: 203.0.113.13
    private_address: 10.0.0.13
    tags: {role: manager}
  - hostname: w1
    public_address: 203.0.113.21
    private_address: 10.0.0.21
    tags: {role: worker}
"""


class TestSwarmDefaults:
    """Tests for environment-driven defaults."""

    def test_defaults(self):
        defaults = SwarmDefaults.from_env({})

        assert defaults.drain_interval == 5.0
        assert defaults.drain_timeout == 600.0
        assert defaults.ssh_user == "root"
        assert defaults.ssh_key is None

    def test_overrides(self):
        defaults = SwarmDefaults.from_env({
            "SWARMCTL_DRAIN_TIMEOUT": "120",
            "SWARMCTL_SSH_USER": "ubuntu",
            "SWARMCTL_SSH_PORT": "2222",
        })

        assert defaults.drain_timeout == 120.0
        assert defaults.ssh_user == "ubuntu"
        assert defaults.ssh_port == 2222

    def test_invalid_value_falls_back(self):
        assert SwarmDefaults.from_env({"SWARMCTL_SSH_PORT": "twenty"}).ssh_port == 22


class TestBuildTransport:
    """Tests for transport selection."""

    def test_ssh_by_default(self):
        defaults = SwarmDefaults()
        args = cli.build_parser(defaults).parse_args(["--user", "ubuntu", "--port", "2200", "nodes"])

        transport = cli.build_transport(args, defaults)

        assert isinstance(transport, SSHTransport)
        assert transport.config.user == "ubuntu"
        assert transport.config.port == 2200

    def test_local(self):
        defaults = SwarmDefaults()
        args = cli.build_parser(defaults).parse_args(["--local", "info"])

        assert isinstance(cli.build_transport(args, defaults), LocalTransport)


class TestMain:
    """Tests for cli.main with a mocked SwarmManager."""

    @pytest.fixture
    def mock_manager(self):
        with patch("swarmctl.cli.SwarmManager") as manager_cls:
            manager = MagicMock()
            manager.get_nodes.return_value = []
            manager_cls.return_value = manager
            yield manager

    def test_create(self, mock_manager, tmp_path, capsys):
        path = tmp_path / "Clusterfile.yaml"
        path.write_text(MANIFEST)
        mock_manager.create_swarm.return_value = "cluster123"

        status = cli.main(["create", str(path)])

        assert status == cli.STATUS_OK
        members = mock_manager.create_swarm.call_args[0][0]
        assert [m.hostname for m in members] == ["m1", "m2", "m3", "w1"]
        assert "cluster123" in capsys.readouterr().out

    def test_update_starts_on_first_manager(self, mock_manager, tmp_path):
        path = tmp_path / "Clusterfile.yaml"
        path.write_text(MANIFEST)
        mock_manager.update_swarm.return_value = []

        assert cli.main(["update", str(path)]) == cli.STATUS_OK
        mock_manager.switch_node.assert_called_once_with("203.0.113.11")

    def test_update_skips_manager_not_in_cluster(self, mock_manager, tmp_path):
        """A new, not-yet-joined first manager is not used as the starting node."""
        path = tmp_path / "Clusterfile.yaml"
        path.write_text(MANIFEST)
        mock_manager.get_info.side_effect = [MagicMock(cluster_id=""), MagicMock(cluster_id="cluster123")]
        mock_manager.update_swarm.return_value = []

        assert cli.main(["update", str(path)]) == cli.STATUS_OK
        assert [c.args[0] for c in mock_manager.switch_node.call_args_list] == ["203.0.113.11", "203.0.113.12"]

    def test_update_skips_unreachable_manager(self, mock_manager, tmp_path):
        path = tmp_path / "Clusterfile.yaml"
        path.write_text(MANIFEST)
        mock_manager.switch_node.side_effect = [TransportError("unreachable"), None]
        mock_manager.get_info.return_value = MagicMock(cluster_id="cluster123")
        mock_manager.update_swarm.return_value = []

        assert cli.main(["update", str(path)]) == cli.STATUS_OK
        assert mock_manager.switch_node.call_count == 2

    def test_update_without_live_manager(self, mock_manager, tmp_path, capsys):
        path = tmp_path / "Clusterfile.yaml"
        path.write_text(MANIFEST)
        mock_manager.get_info.return_value = MagicMock(cluster_id="")

        assert cli.main(["update", str(path)]) == cli.STATUS_ERROR
        assert "--node" in capsys.readouterr().err
        mock_manager.update_swarm.assert_not_called()

    def test_drain(self, mock_manager):
        status = cli.main(["--node", "203.0.113.11", "--drain-timeout", "60", "drain", "w1", "w2"])

        assert status == cli.STATUS_OK
        mock_manager.switch_node.assert_called_once_with("203.0.113.11")
        mock_manager.drain_nodes.assert_called_once_with(["w1", "w2"])

    def test_drain_timeout_exit_status(self, mock_manager, capsys):
        error = DrainTimeout("w1", 60.0)
        error.add_context("error draining node w1")
        mock_manager.drain_nodes.side_effect = error

        status = cli.main(["--node", "203.0.113.11", "drain", "w1"])

        assert status == cli.STATUS_ERROR
        err = capsys.readouterr().err
        assert "error draining node w1: timed out waiting for w1 to drain after 60.0s" in err

    def test_token(self, mock_manager, capsys):
        mock_manager.join_token.return_value = "SWMTKN-1-abc"

        assert cli.main(["--node", "203.0.113.11", "token", "worker"]) == cli.STATUS_OK
        assert capsys.readouterr().out.strip() == "SWMTKN-1-abc"

    def test_missing_starting_node(self, mock_manager, capsys):
        assert cli.main(["nodes"]) == cli.STATUS_ERROR
        assert "--node" in capsys.readouterr().err

    def test_failover_error(self, mock_manager, capsys):
        mock_manager.get_nodes.side_effect = NoSuitableManager([])

        assert cli.main(["--node", "203.0.113.11", "nodes"]) == cli.STATUS_ERROR
        assert "suitable manager" in capsys.readouterr().err

    def test_unknown_role_is_usage_error(self, mock_manager):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["token", "admin"])
        assert exc_info.value.code == 2
