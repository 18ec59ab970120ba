from unittest.mock import MagicMock, patch

import pytest

from opsutility import clouddrive
from opsutility.credentials import CredentialStore
from opsutility.errors import CredentialError, FatalError, Outcome, ReadinessTimeout
from opsutility.models import ToolResult

FUSE_SHOW_ENABLED = """\
Showing mount M:
  Local path:  M:
  Remote path: /
  Name:        M:
  Persistent:  YES
  Enabled:     YES
"""


class TestMountEnabled:

    def test_enabled_yes(self):
        assert clouddrive.mount_enabled(FUSE_SHOW_ENABLED)

    def test_enabled_no(self):
        assert not clouddrive.mount_enabled(FUSE_SHOW_ENABLED.replace("Enabled:     YES", "Enabled:     NO"))

    def test_missing_line(self):
        assert not clouddrive.mount_enabled("Showing mount M:\n  Persistent:  YES\n")

    def test_token_must_be_exactly_yes(self):
        assert not clouddrive.mount_enabled("Enabled: YESTERDAY")
        assert not clouddrive.mount_enabled("Enabled: yes")

    def test_prefixed_label(self):
        assert clouddrive.mount_enabled("M: Enabled: YES")
        assert not clouddrive.mount_enabled("Disabled: YES")


class TestLoginState:

    def test_logged_in(self):
        assert clouddrive.classify_login("Account e-mail: me@example.com") == Outcome.SUCCESS

    def test_not_logged_in(self):
        assert clouddrive.classify_login("[API:err: 10:15:00] Not logged in.") == Outcome.FAILURE

    def test_unrecognised_output(self):
        assert clouddrive.classify_login("") == Outcome.UNKNOWN

    def test_login_state_uses_captured_output(self):
        result = ToolResult(args=["mega-whoami"], returncode=0, stdout="Account e-mail: a@b.c",
                            outcome=Outcome.SUCCESS)
        with patch("opsutility.clouddrive.run_tool", return_value=result):
            assert clouddrive.login_state() == Outcome.SUCCESS

    def test_login_state_ignores_exit_code_alone(self):
        result = ToolResult(args=["mega-whoami"], returncode=0, stdout="Not logged in.", outcome=Outcome.SUCCESS)
        with patch("opsutility.clouddrive.run_tool", return_value=result):
            assert clouddrive.login_state() == Outcome.FAILURE

    def test_missing_client_is_unknown(self):
        result = ToolResult(args=["mega-whoami"], outcome=Outcome.UNKNOWN)
        with patch("opsutility.clouddrive.run_tool", return_value=result):
            assert clouddrive.login_state() == Outcome.UNKNOWN


class TestLogin:

    @pytest.fixture
    def store(self, memory_keyring):
        store = CredentialStore("cloud-test")
        store.save("me@example.com", "pw")
        return store

    def test_already_logged_in(self, store):
        with patch("opsutility.clouddrive.login_state", return_value=Outcome.SUCCESS), \
                patch("opsutility.clouddrive.run_tool") as run:
            assert clouddrive.login(store) is False
        run.assert_not_called()

    def test_login_with_stored_credential(self, store):
        ok = ToolResult(args=["mega-login", "***", "***"], returncode=0, outcome=Outcome.SUCCESS)
        with patch("opsutility.clouddrive.login_state", return_value=Outcome.FAILURE), \
                patch("opsutility.clouddrive.run_tool", return_value=ok) as run, \
                patch("opsutility.clouddrive.wait_until", return_value=True):
            assert clouddrive.login(store) is True
        args, kwargs = run.call_args
        assert args[0][1:] == ["me@example.com", "pw"]
        assert kwargs["sensitive"] is True
        assert store.has()

    def test_rejected_login_forgets_credential(self, store):
        failed = ToolResult(args=["mega-login"], returncode=9, stdout="Login failed: invalid email or password",
                            outcome=Outcome.FAILURE)
        with patch("opsutility.clouddrive.login_state", return_value=Outcome.FAILURE), \
                patch("opsutility.clouddrive.run_tool", return_value=failed):
            with pytest.raises(CredentialError, match="invalid email"):
                clouddrive.login(store)
        assert not store.has()

    def test_login_that_never_takes_effect(self, store):
        ok = ToolResult(args=["mega-login"], returncode=0, outcome=Outcome.SUCCESS)
        with patch("opsutility.clouddrive.login_state", return_value=Outcome.FAILURE), \
                patch("opsutility.clouddrive.run_tool", return_value=ok), \
                patch("opsutility.clouddrive.wait_until", side_effect=ReadinessTimeout("login", 60)):
            with pytest.raises(CredentialError):
                clouddrive.login(store)
        assert not store.has()

    def test_missing_client_keeps_credential(self, store):
        missing = ToolResult(args=["mega-login", "***", "***"], stderr="[WinError 2] file not found",
                             outcome=Outcome.UNKNOWN)
        with patch("opsutility.clouddrive.login_state", return_value=Outcome.UNKNOWN), \
                patch("opsutility.clouddrive.run_tool", return_value=missing):
            with pytest.raises(FatalError) as excinfo:
                clouddrive.login(store)
        assert not isinstance(excinfo.value, CredentialError)
        assert store.has()

    def test_unconfirmed_login_keeps_credential(self, store):
        ok = ToolResult(args=["mega-login"], returncode=0, outcome=Outcome.SUCCESS)
        with patch("opsutility.clouddrive.login_state", return_value=Outcome.UNKNOWN), \
                patch("opsutility.clouddrive.run_tool", return_value=ok), \
                patch("opsutility.clouddrive.wait_until", side_effect=ReadinessTimeout("login", 60)):
            with pytest.raises(FatalError, match="could not be confirmed"):
                clouddrive.login(store)
        assert store.has()


class TestInstall:

    def test_installed_client_only_updates_path(self, tmp_path, monkeypatch):
        (tmp_path / clouddrive.SERVER_EXE).write_bytes(b"")
        monkeypatch.setattr(clouddrive, "CLOUD_CLIENT_DIR", tmp_path)
        monkeypatch.setenv("PATH", "/usr/bin")
        with patch("opsutility.clouddrive.download_file") as download:
            assert clouddrive.ensure_installed() is False
        download.assert_not_called()
        assert str(tmp_path) in clouddrive.os.environ["PATH"]

    def test_install_requires_elevation(self, tmp_path, monkeypatch):
        monkeypatch.setattr(clouddrive, "CLOUD_CLIENT_DIR", tmp_path)
        with patch("opsutility.clouddrive.is_admin", return_value=False):
            with pytest.raises(FatalError, match="elevated"):
                clouddrive.ensure_installed()

    def test_install_runs_both_installers(self, tmp_path, monkeypatch):
        client_dir = tmp_path / "client"
        client_dir.mkdir()
        monkeypatch.setattr(clouddrive, "CLOUD_CLIENT_DIR", client_dir)
        driver = tmp_path / "winfsp.msi"
        client = tmp_path / "MEGAcmdSetup64.exe"
        driver.write_bytes(b"")
        client.write_bytes(b"")

        def install(args, **kwargs):
            if args[0] == client:
                (client_dir / clouddrive.SERVER_EXE).write_bytes(b"")
            return ToolResult(args=[str(a) for a in args], returncode=0, outcome=Outcome.SUCCESS)

        with patch("opsutility.clouddrive.is_admin", return_value=True), \
                patch("opsutility.clouddrive.download_file", side_effect=[driver, client]), \
                patch("opsutility.clouddrive.run_tool", side_effect=install) as run:
            assert clouddrive.ensure_installed() is True

        assert run.call_args_list[0][0][0][:2] == ["msiexec", "/i"]
        assert run.call_args_list[1][0][0] == [client, "/S"]
        assert not driver.exists() and not client.exists()


class TestMount:

    def test_verify_mount_polls_show_output(self):
        shows = iter([
            ToolResult(args=["show"], returncode=0, stdout="Enabled: NO", outcome=Outcome.SUCCESS),
            ToolResult(args=["show"], returncode=0, stdout=FUSE_SHOW_ENABLED, outcome=Outcome.SUCCESS),
        ])
        sleeps = []

        def wait_until(predicate, description, timeout):
            while not predicate():
                sleeps.append(1)
            return True

        with patch("opsutility.clouddrive.show_mount", side_effect=lambda: next(shows)), \
                patch("opsutility.clouddrive.wait_until", side_effect=wait_until):
            assert clouddrive.verify_mount()
        assert sleeps == [1]

    def test_verify_mount_failure_is_fatal(self):
        with patch("opsutility.clouddrive.wait_until", side_effect=ReadinessTimeout("mount", 60)):
            with pytest.raises(FatalError, match="Mount verification failed"):
                clouddrive.verify_mount()

    def test_mount_adds_then_enables(self):
        calls = []

        def run_tool(args, **kwargs):
            calls.append(args[0].stem)
            ok = args[0].stem != "mega-fuse-show"
            return ToolResult(args=[str(a) for a in args], returncode=0 if ok else 1,
                              outcome=Outcome.SUCCESS if ok else Outcome.FAILURE)

        with patch("opsutility.clouddrive.run_tool", side_effect=run_tool):
            clouddrive.mount("/", "M:")
        assert calls == ["mega-fuse-show", "mega-fuse-add", "mega-fuse-enable"]

    def test_install_and_mount_sequence(self, memory_keyring):
        manager = MagicMock()
        names = ["ensure_installed", "obtain_credentials", "login", "start_server", "mount", "verify_mount"]
        patches = [patch(f"opsutility.clouddrive.{n}", getattr(manager, n)) for n in names]
        for p in patches:
            p.start()
        try:
            manager.verify_mount.return_value = True
            assert clouddrive.install_and_mount(interactive=False)
        finally:
            for p in patches:
                p.stop()
        assert [c[0] for c in manager.mock_calls] == names
