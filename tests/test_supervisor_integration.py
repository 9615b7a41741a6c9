"""End-to-end supervisor tests with real stub processes."""

import stat
from unittest.mock import Mock

import pytest

from slipstream_wrapper.supervisor.state import StageState, SupervisorState
from slipstream_wrapper.supervisor.supervisor import TunnelSupervisor
from slipstream_wrapper.tunnel.models import TunnelConfiguration

from conftest import wait_until

CONFIG = TunnelConfiguration(resolvers=("127.0.0.1",), domain="t.example.com", local_port=10800)

STAGE1_OK = 'print("resolving", flush=True)\ntime.sleep(0.1)\nprint("Connection confirmed.", flush=True)\ntime.sleep(30)'
SSH_OK = "time.sleep(30)"


@pytest.mark.integration
class TestSupervisorIntegration:
    """Real processes provisioned from an assets directory."""

    @pytest.fixture
    def supervisor(self, fast_settings, sink):
        fast_settings.stage1_timeout = 3.0
        sup = TunnelSupervisor(settings=fast_settings, sink=sink, cleaner=Mock())
        yield sup
        sup.stop()

    @pytest.fixture
    def assets(self, fast_settings, make_stub):
        def _install(stage1_body, ssh_body=SSH_OK):
            make_stub("slipstream-client", stage1_body, fast_settings.assets_dir)
            make_stub("ssh", ssh_body, fast_settings.assets_dir)

        return _install

    def test_marker_brings_tunnel_up(self, supervisor, assets, fast_settings):
        assets(STAGE1_OK)

        event = supervisor.apply(CONFIG)

        assert event.state is SupervisorState.RUNNING
        assert (event.stage1.kind, event.stage2.kind) == (StageState.RUNNING, StageState.RUNNING)
        snapshot = supervisor.query_status()
        assert snapshot.stage1_alive and snapshot.stage2_alive
        assert (fast_settings.bin_dir / "slipstream-client").is_file()

        final = supervisor.stop()

        assert final.stage1.kind is StageState.STOPPED
        assert not supervisor.query_status().stage1_alive

    def test_stage1_exit_never_starts_ssh(self, supervisor, assets, tmp_path):
        started = tmp_path / "ssh-started"
        assets(
            'print("resolver refused", flush=True)\ntime.sleep(0.05)\nsys.exit(1)',
            f'open(r"{started}", "w").close()\ntime.sleep(30)',
        )

        event = supervisor.apply(CONFIG)

        assert event.state is SupervisorState.FAILED
        assert supervisor.last_error.exit_code == 1
        assert "resolver refused" in supervisor.last_error.output
        assert not started.exists()

    def test_ssh_death_is_restarted(self, supervisor, assets, tmp_path):
        flag = tmp_path / "ssh-ran"
        assets(
            STAGE1_OK,
            "import os\n"
            f'flag = r"{flag}"\n'
            "if not os.path.exists(flag):\n"
            '    open(flag, "w").close()\n'
            "    time.sleep(0.3)\n"
            "    sys.exit(1)\n"
            "time.sleep(30)",
        )
        supervisor.apply(CONFIG)
        first_pid = supervisor.query_status().stage1_pid

        assert wait_until(
            lambda: supervisor.state is SupervisorState.RUNNING
            and supervisor.query_status().stage1_pid not in (None, first_pid),
            timeout=10.0,
        )
        assert supervisor.restart_count == 1
        assert supervisor.query_status().stage2_alive

    def test_key_permissions_fixed(self, supervisor, assets, tmp_path):
        assets(STAGE1_OK)
        key = tmp_path / "id_ed25519"
        key.write_text("key")
        key.chmod(0o644)

        event = supervisor.apply(CONFIG.model_copy(update={"key_path": key}))

        assert event.state is SupervisorState.RUNNING
        assert stat.S_IMODE(key.stat().st_mode) == 0o600
