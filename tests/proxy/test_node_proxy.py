from datetime import datetime, timezone
from pathlib import Path

import pytest

from hivenode.bundle.bundle import CommandBundle
from hivenode.errors import HiveError, InvalidCommandError, NodeDisposedError, RemoteCommandError
from hivenode.logging.node_log import NodeLog
from hivenode.observers.dispatcher import EventBus
from hivenode.observers.events import CommandCompleted, NodeFaulted, NodeStatusChanged
from hivenode.ssh.models import RunOptions


class Recorder:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)


def test_run_command_formats_args_and_prefixes_path(node, fake_host):
    response = node.run_command("echo", "a b", None, True, ["x", "y z"])

    assert response.success
    assert response.output_text == "a b true x y z\n"
    assert response.command == 'echo "a b" true x "y z"'
    assert response.bash_command.startswith(f"export PATH={fake_host.remote_path} && ")


def test_ignore_remote_path(node):
    response = node.run_command("echo hi", options=RunOptions(ignore_remote_path=True))
    assert response.bash_command == "echo hi"


def test_redirection_is_rejected_before_connecting(node, fake_host):
    with pytest.raises(InvalidCommandError):
        node.run_command("echo hi > /tmp/x")
    with pytest.raises(InvalidCommandError):
        node.sudo_command("cat < /etc/passwd")
    assert fake_host.connects == []


def test_faulted_node_short_circuits_commands(node, fake_host):
    node.fault("disk on fire")

    response = node.run_command("echo hi")
    assert response.exit_code == 1
    assert response.proxy_is_faulted
    assert response.error_text == "** Hive node is faulted **"
    assert fake_host.commands == []

    response = node.run_command("echo hi", options=RunOptions(run_when_faulted=True))
    assert response.success
    assert response.output_text == "hi\n"


def test_fault_on_error_faults_and_raises(node):
    with pytest.raises(RemoteCommandError) as info:
        node.run_command("false", options=RunOptions(fault_on_error=True))

    assert str(info.value) == "[exitcode=1]: false"
    assert info.value.response.exit_code == 1
    assert node.is_faulted
    assert node.status.startswith("*** FAULT")


def test_fault_on_error_hides_redacted_command(node):
    with pytest.raises(RemoteCommandError) as info:
        node.run_command("false", "hunter2", options=RunOptions(fault_on_error=True, redact=True))
    assert "hunter2" not in str(info.value)
    assert "**REDACTED COMMAND**" in str(info.value)


def test_default_options_are_merged_on_request(make_node):
    node = make_node(default_options=RunOptions(fault_on_error=True))
    assert node.run_command("false", options=RunOptions()).exit_code == 1
    with pytest.raises(RemoteCommandError):
        node.run_command("false")


def test_sudo_command_and_as_user(node):
    response = node.sudo_command("echo", "root stuff")
    assert response.success
    assert response.output_text == "root stuff\n"
    assert response.bash_command.startswith("sudo bash -c ")

    response = node.sudo_command_as_user("postgres", "echo", "as user")
    assert response.success
    assert response.output_text == "as user\n"

    # the user name reaches sudo as a single argument
    response = node.sudo_command_as_user("svc account", "echo", "quoted")
    assert response.success
    assert response.output_text == "quoted\n"


def test_node_log_records_commands_and_redacts(make_node, tmp_path):
    log_dir = tmp_path / "logs"
    node = make_node(node_log=NodeLog.for_node("node-1", log_dir))

    node.run_command("echo", "visible")
    secret = node.run_command("echo", "s3cret", options=RunOptions(redact=True, log_output=True))
    failed = node.run_command("ls", "/s3cret-path", options=RunOptions(redact=True))
    node.run_command("ls /nope", options=RunOptions(log_on_error_only=True))
    node.node_log.close()

    text = next(log_dir.glob("node-1-*.log")).read_text()
    assert "START: echo visible" in text
    assert "END [OK]" in text
    assert "START: echo !!SECRETS-REDACTED!!" in text
    assert "s3cret" not in text
    assert text.count("STDERR") == 2
    assert secret.output_text == "s3cret\n"
    assert "s3cret" not in secret.bash_command
    assert failed.exit_code != 0
    assert "s3cret" in failed.error_text
    assert "START: ls /nope" in text
    assert "STDERR" in text
    assert "END [ERROR=2]" in text


def test_status_and_events(make_node):
    recorder = Recorder()
    node = make_node(bus=EventBus([recorder]))

    node.status = "configuring\nsecond line"
    assert node.status == "configuring"
    assert not node.is_ready

    node.run_command("true")
    node.fault()
    assert node.status == "*** FAULTED ***"
    assert node.is_ready

    kinds = [type(e) for e in recorder.events]
    assert kinds == [NodeStatusChanged, CommandCompleted, NodeFaulted]


def test_run_and_sudo_bundles(node, tmp_path):
    bundle = CommandBundle("./setup.sh", "--name", "web 1")
    bundle.add_file("setup.sh", "#!/bin/bash\necho \"args: $*\"\ncat data/conf.txt\n", is_executable=True)
    bundle.add_file("data/conf.txt", "key=value\n")

    response = node.run_bundle(bundle)
    assert response.success
    assert response.output_text == "args: --name web 1\nkey=value\n"

    response = node.sudo_bundle(CommandBundle.from_script("echo elevated\n"))
    assert response.output_text == "elevated\n"

    # bundle folders are always removed
    assert [p.name for p in Path(node.exec_root).iterdir()] == ["cmd"]


def test_upload_and_download(node, tmp_path):
    target = tmp_path / "etc" / "app" / "app.conf"

    node.upload_text(str(target), "a\r\n\tb\n", tab_stop=2, permissions="640")
    assert target.read_text() == "a\n  b\n"
    assert oct(target.stat().st_mode & 0o777) == "0o640"

    assert node.download_text(str(target)) == "a\n  b\n"
    assert node.file_exists(str(target))
    assert not node.file_exists(str(target) + ".missing")
    assert node.directory_exists(str(target.parent))

    local = tmp_path / "copy.conf"
    node.download_to_file(str(target), local)
    assert local.read_text() == "a\n  b\n"

    node.remove_file(str(target))
    assert not target.exists()

    # staging folders are left empty
    home = Path(node.folders.home("hive"))
    assert list((home / ".upload").iterdir()) == []
    assert list((home / ".download").iterdir()) == []


def test_transfers_are_skipped_when_faulted(node, tmp_path):
    node.fault()
    node.upload_bytes(str(tmp_path / "x"), b"data")
    assert not (tmp_path / "x").exists()
    assert node.download(str(tmp_path / "x")) is None


def test_host_utilities(node):
    node.prepare_host_folders()
    assert Path(node.state_root).is_dir()
    assert Path(node.tmpfs_root).is_dir()
    assert Path(node.tools_folder).is_dir()

    assert node.get_network_interface("10.0.0.11") == "eth0"
    with pytest.raises(HiveError):
        node.get_network_interface("192.168.9.9")

    remote_now = node.get_time_utc()
    assert remote_now.tzinfo is not None
    assert abs((datetime.now(timezone.utc) - remote_now).total_seconds()) < 60


def test_clone_has_independent_sessions(node, fake_host):
    node.run_command("true")
    clone = node.clone()
    try:
        assert clone.name == node.name
        assert clone.session is not node.session
        clone.run_command("true")
    finally:
        clone.close()


def test_closed_proxy_refuses_work(make_node):
    node = make_node()
    node.close()
    with pytest.raises(NodeDisposedError):
        node.run_command("true")


def test_missing_credentials_and_addresses(make_node):
    with pytest.raises(HiveError):
        make_node(credentials=None).run_command("true")

    node = make_node(use_public_address=True)
    with pytest.raises(HiveError):
        node.resolve_endpoint()

    node = make_node(endpoint_resolver=lambda name: ("127.0.0.1", 2200))
    assert node.resolve_endpoint() == ("127.0.0.1", 2200)


def test_update_credentials_keeps_live_session(node, fake_host):
    from hivenode.ssh.credentials import SshCredentials

    node.run_command("true")
    session = node.session
    opened = len(fake_host.connects)
    node.update_credentials(SshCredentials.from_password("ops", "pw2"))
    node.run_command("true")

    assert node.session is session
    assert len(fake_host.connects) == opened
    assert node.exec_root.endswith("/ops/.exec")

    # the next connection authenticates as the new user
    node.disconnect()
    node.run_command("true")
    users = [kw["username"] for kw in fake_host.connects]
    assert set(users[:opened]) == {"hive"}
    assert set(users[opened:]) == {"ops"}
