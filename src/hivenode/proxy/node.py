# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hivenode/proxy/node.py

from __future__ import annotations

import posixpath
import re
import shlex
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Set, Tuple

from hivenode.bundle.args import format_command
from hivenode.bundle.bundle import CommandBundle, pack_bundle
from hivenode.config.models import DEFAULT_REMOTE_PATH, HostFolders, TimingSpec
from hivenode.errors import HiveError, InvalidCommandError, NodeDisposedError, RemoteCommandError
from hivenode.logging.node_log import NodeLog
from hivenode.observers.dispatcher import EventBus
from hivenode.observers.events import CommandCompleted, new_ctx
from hivenode.proxy.boot import BootMixin
from hivenode.proxy.docker import DockerMixin
from hivenode.proxy.ledger import LedgerMixin
from hivenode.proxy.status import NodeState
from hivenode.ssh.connection import SessionPair
from hivenode.ssh.credentials import SshCredentials
from hivenode.ssh.gate import DEFAULT_GATE, ConnectGate
from hivenode.ssh.models import DEFAULTS, NONE, CommandResponse, RunOptions
from hivenode.ssh.safe_exec import SafeCommandRunner
from hivenode.ssh.scripts import bundle_run_script, user_script

FAULTED_ERROR = "** Hive node is faulted **"
REDACTED = "!!SECRETS-REDACTED!!"
BUNDLE_ARCHIVE = "__bundle.tgz"

EndpointResolver = Callable[[str], Tuple[str, int]]

_INTERFACE_RE = re.compile(r"^\d+:\s*(?P<interface>[^\s]+)\s*inet\s*(?P<address>[^/]+)")

# Internal housekeeping commands: quiet unless they fail, and allowed after a fault.
_HOUSEKEEPING = RunOptions(log_on_error_only=True, run_when_faulted=True)


def _display(command_line: str, redact: bool) -> str:
    if not redact:
        return command_line
    first = command_line.split(None, 1)[0] if command_line.strip() else ""
    return f"{first} {REDACTED}"


def _indented(text: str) -> str:
    return "\n".join(f"    {line}" for line in text.rstrip("\n").splitlines())


def _linux_text(text: str, tab_stop: int = 0) -> str:
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    if tab_stop > 0:
        lines = [line.expandtabs(tab_stop) for line in lines]
    return "\n".join(lines)


class NodeProxy(BootMixin, LedgerMixin, DockerMixin):
    """
    Remote control for a single hive node.

    Commands run through the safe execution protocol over a lazily opened
    SSH session, are logged to the node's operation log and return a
    ``CommandResponse``.  A proxy is not safe for concurrent use; use
    ``clone()`` to get an independent proxy for another thread.
    """

    def __init__(
        self,
        name: str,
        private_address: Optional[str] = None,
        *,
        public_address: Optional[str] = None,
        port: int = 22,
        credentials: Optional[SshCredentials] = None,
        use_public_address: bool = False,
        endpoint_resolver: Optional[EndpointResolver] = None,
        timing: Optional[TimingSpec] = None,
        folders: Optional[HostFolders] = None,
        remote_path: str = DEFAULT_REMOTE_PATH,
        default_options: RunOptions = NONE,
        node_log: Optional[NodeLog] = None,
        bus: Optional[EventBus] = None,
        hive: str = "hive",
        run_id: Optional[str] = None,
        gate: ConnectGate = DEFAULT_GATE,
        metadata: Any = None,
    ):
        self.name = name
        self.private_address = private_address
        self.public_address = public_address
        self.port = port
        self.use_public_address = use_public_address
        self.endpoint_resolver = endpoint_resolver
        self.timing = timing or TimingSpec()
        self.folders = folders or HostFolders()
        self.remote_path = remote_path
        self.default_options = default_options
        self.node_log = node_log or NodeLog(name)
        self.bus = bus or EventBus()
        self.hive = hive
        self.run_id = run_id
        self.gate = gate
        self.metadata = metadata

        self.state = NodeState(name, self.node_log, self.bus, hive=hive, run_id=run_id)
        self._credentials = credentials
        self._session: Optional[SessionPair] = None
        self._staging: Set[str] = set()
        self._disposed = False

    def __repr__(self) -> str:
        return f"NodeProxy({self.name!r}, {self.private_address!r})"

    # ------------------ lifecycle ------------------

    def clone(self) -> "NodeProxy":
        """
        Returns a new proxy for the same node with its own SSH sessions.
        """
        return NodeProxy(
            self.name,
            self.private_address,
            public_address=self.public_address,
            port=self.port,
            credentials=self._credentials,
            use_public_address=self.use_public_address,
            endpoint_resolver=self.endpoint_resolver,
            timing=self.timing,
            folders=self.folders,
            remote_path=self.remote_path,
            default_options=self.default_options,
            node_log=self.node_log,
            bus=self.bus,
            hive=self.hive,
            run_id=self.run_id,
            gate=self.gate,
            metadata=self.metadata,
        )

    def close(self) -> None:
        if self._disposed:
            return
        self.disconnect()
        self._disposed = True
        self.node_log.flush()

    def __enter__(self) -> "NodeProxy":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def disconnect(self) -> None:
        if self._session is not None:
            self._session.disconnect()

    @property
    def credentials(self) -> Optional[SshCredentials]:
        return self._credentials

    def update_credentials(self, credentials: SshCredentials) -> None:
        """Swap credentials; live sessions stay open and the next connect uses the new ones."""
        self._credentials = credentials
        if self._session is not None:
            self._session.credentials = credentials
        self._staging.clear()

    def resolve_endpoint(self) -> Tuple[str, int]:
        if self.endpoint_resolver is not None:
            return self.endpoint_resolver(self.name)
        address = self.public_address if self.use_public_address else self.private_address
        if not address:
            kind = "public" if self.use_public_address else "private"
            raise HiveError(f"Node [{self.name}] has no {kind} address.")
        return address, self.port

    @property
    def session(self) -> SessionPair:
        if self._disposed:
            raise NodeDisposedError(f"Node proxy [{self.name}] has been closed.")
        if self._credentials is None:
            raise HiveError(f"Node [{self.name}] has no SSH credentials.")
        if self._session is None:
            self._session = SessionPair(
                self.name,
                self._credentials,
                self.resolve_endpoint,
                timing=self.timing,
                gate=self.gate,
            )
        return self._session

    @property
    def runner(self) -> SafeCommandRunner:
        return SafeCommandRunner(self.session, self.exec_root)

    # ------------------ remote folders ------------------

    def _folder(self, name: str) -> str:
        username = self._credentials.username if self._credentials else "root"
        return self.folders.resolve(name, username)

    @property
    def exec_root(self) -> str:
        return self._folder("exec_root")

    @property
    def state_root(self) -> str:
        return self._folder("state")

    @property
    def tmpfs_root(self) -> str:
        return self._folder("tmpfs")

    @property
    def tools_folder(self) -> str:
        return self._folder("tools")

    # ------------------ status ------------------

    @property
    def status(self) -> str:
        return self.state.status

    @status.setter
    def status(self, value: str) -> None:
        self.state.status = value

    @property
    def is_faulted(self) -> bool:
        return self.state.is_faulted

    @property
    def fault_message(self) -> Optional[str]:
        return self.state.fault_message

    @property
    def is_ready(self) -> bool:
        return self.state.is_ready

    @is_ready.setter
    def is_ready(self, value: bool) -> None:
        self.state.is_ready = value

    def fault(self, message: Optional[str] = None) -> None:
        self.state.fault(message)

    def _ctx(self) -> Dict[str, Any]:
        return new_ctx(self.hive, self.run_id)

    # ------------------ commands ------------------

    def _execute(
        self,
        command_line: str,
        bash: str,
        options: RunOptions,
        display: str,
        audit_bash: Optional[str] = None,
    ) -> CommandResponse:
        # responses carry the logged rendering of the command
        shown_bash = audit_bash if audit_bash is not None else bash
        if self.is_faulted and not options.run_when_faulted:
            return CommandResponse(
                command=command_line,
                bash_command=shown_bash,
                exit_code=1,
                output_text=None if options.binary_output else "",
                output_binary=b"" if options.binary_output else None,
                error_text=FAULTED_ERROR,
                proxy_is_faulted=True,
            )

        node_log = self.node_log
        if not options.log_on_error_only and not options.log_bundle:
            node_log.log_line(f"START: {display}")

        if options.shutdown:
            exit_code, out, err = self.session.exec_fresh(bash)
        else:
            exit_code, out, err = self.runner.run(bash, binary=options.binary_output)

        if options.binary_output:
            response = CommandResponse(command_line, shown_bash, exit_code, output_binary=out, error_text=err)
        else:
            response = CommandResponse(command_line, shown_bash, exit_code, output_text=out, error_text=err)

        if options.log_on_error_only and exit_code != 0:
            node_log.log_line(f"START: {display}")

        if not options.log_on_error_only or exit_code != 0:
            if options.log_output and (response.output_text or response.output_binary):
                if options.redact:
                    node_log.log_line(f"    {REDACTED}")
                elif response.output_text:
                    node_log.log_line(_indented(response.output_text))
                else:
                    node_log.log_line(f"    [binary output length={len(response.output_binary)}]")
            if err.strip():
                node_log.log_line("STDERR")
                node_log.log_line(f"    {REDACTED}" if options.redact else _indented(err))
            node_log.log_line("END [OK]" if exit_code == 0 else f"END [ERROR={exit_code}]")

        self.bus.emit(CommandCompleted(**self._ctx(), node=self.name, command=display, exit_code=exit_code))

        if exit_code != 0 and options.fault_on_error:
            self.status = f"ERROR[{exit_code}]"
            if options.redact:
                message = f"[exitcode={exit_code}]: **REDACTED COMMAND**"
                self.fault(message)
            else:
                message = f"[exitcode={exit_code}]: {command_line}"
                self.fault(response.error_summary)
            raise RemoteCommandError(message, response=response)

        return response

    def _with_path(self, line: str, options: RunOptions) -> str:
        return line if options.ignore_remote_path else f"export PATH={self.remote_path} && {line}"

    def run_command(self, command: str, *args: Any, options: RunOptions = DEFAULTS) -> CommandResponse:
        """
        Run a command as the login user.

        Arguments are rendered with ``format_command``.  Shell redirection is
        not allowed; write a bundle script instead.
        """
        if "<" in command or ">" in command:
            raise InvalidCommandError(f"Command [{command}] may not use redirection; use a bundle instead.")

        options = options.merged(self.default_options)
        command_line = format_command(command, *args)
        display = _display(command_line, options.redact)
        return self._execute(
            command_line,
            self._with_path(command_line, options),
            options,
            display,
            audit_bash=self._with_path(display, options),
        )

    def sudo_command(self, command: str, *args: Any, options: RunOptions = DEFAULTS) -> CommandResponse:
        """Run a command as root via ``sudo bash -c``."""
        if "<" in command or ">" in command:
            raise InvalidCommandError(f"Command [{command}] may not use redirection; use a bundle instead.")

        options = options.merged(self.default_options) | RunOptions(sudo=True)
        command_line = format_command(command, *args)
        display = _display(command_line, options.redact)
        return self._execute(
            command_line,
            f"sudo bash -c {shlex.quote(self._with_path(command_line, options))}",
            options,
            "sudo " + display,
            audit_bash=f"sudo bash -c {shlex.quote(self._with_path(display, options))}",
        )

    def sudo_command_as_user(self, user: str, command: str, *args: Any, options: RunOptions = DEFAULTS) -> CommandResponse:
        """Run a command as another Linux user through an elevated bundle script."""
        command_line = format_command(command, *args)
        script = user_script(
            f"sudo -u {shlex.quote(user)} bash -c {shlex.quote(command_line)}",
            remote_path=self.remote_path,
        )
        return self.sudo_bundle(CommandBundle.from_script(script), options=options)

    # ------------------ bundles ------------------

    def _log_bundle(self, bundle: CommandBundle, options: RunOptions, elevated: bool) -> None:
        node_log = self.node_log
        prefix = "sudo " if elevated else ""
        node_log.log_line(f"START-BUNDLE: {prefix}{_display(str(bundle), options.redact)}")
        for file in bundle:
            if file.data is not None:
                node_log.log_line(f"  {file.path}: [binary length={len(file.data)}]")
            elif options.redact:
                node_log.log_line(f"  {file.path}: {REDACTED}")
            else:
                node_log.log_line(f"  {file.path}:")
                node_log.log_line(_indented(file.text or ""))

    def _run_bundle(self, bundle: CommandBundle, options: RunOptions, elevated: bool) -> CommandResponse:
        bundle.validate()
        options = options.merged(self.default_options)

        if self.is_faulted and not options.run_when_faulted:
            return self._execute(str(bundle), str(bundle), options, str(bundle))

        mode = 700 if elevated else 777
        executables = [f.path for f in bundle if f.is_executable]
        archive = pack_bundle(bundle, bundle_run_script(bundle.format_command(), executables, mode))

        self._log_bundle(bundle, options, elevated)
        folder = f"{self.exec_root}/{uuid.uuid4()}"
        setup = _HOUSEKEEPING.with_(run_when_faulted=options.run_when_faulted)
        try:
            self.run_command(f"mkdir -p {folder} && chmod 777 {folder}", options=setup).ensure_success()
            self.session.safe_file_operation(lambda: self.session.upload(f"{folder}/{BUNDLE_ARCHIVE}", archive))
            self.run_command(
                f"cd {folder} && tar -xzf {BUNDLE_ARCHIVE} && rm {BUNDLE_ARCHIVE} && chmod {mode} __run.sh",
                options=setup,
            ).ensure_success()

            run_options = options | RunOptions(log_bundle=True)
            if elevated:
                response = self.sudo_command(f"cd {folder} && /bin/bash ./__run.sh", options=run_options)
            else:
                response = self.run_command(f"cd {folder} && ./__run.sh", options=run_options)
        finally:
            cleanup = self.sudo_command if elevated else self.run_command
            cleanup(f"rm -rf {folder}", options=_HOUSEKEEPING)
            self.node_log.log_line("END-BUNDLE")
            self.node_log.log_line("-" * 40)

        return response

    def run_bundle(self, bundle: CommandBundle, options: RunOptions = DEFAULTS) -> CommandResponse:
        return self._run_bundle(bundle, options, elevated=False)

    def sudo_bundle(self, bundle: CommandBundle, options: RunOptions = DEFAULTS) -> CommandResponse:
        return self._run_bundle(bundle, options, elevated=True)

    # ------------------ files ------------------

    def _staging_folder(self, name: str) -> str:
        folder = self._folder(name)
        if folder not in self._staging:
            self.run_command(f"mkdir -p {folder}", options=_HOUSEKEEPING).ensure_success()
            self._staging.add(folder)
        return folder

    def file_exists(self, path: str) -> bool:
        response = self.sudo_command(f'if [ -f "{path}" ] ; then exit 0; else exit 1; fi', options=NONE)
        return response.exit_code == 0

    def directory_exists(self, path: str) -> bool:
        response = self.sudo_command(f'if [ -d "{path}" ] ; then exit 0; else exit 1; fi', options=NONE)
        return response.exit_code == 0

    def remove_file(self, target: str) -> None:
        self.sudo_command(f'if [ -f "{target}" ] ; then rm "{target}" ; fi', options=_HOUSEKEEPING)

    def upload(self, path: str, data: bytes, user_permissions: bool = False) -> None:
        """
        Upload ``data`` to ``path``, creating the folder if needed.  The file
        is staged in the user's upload folder and moved into place as root
        (or as the login user when ``user_permissions``).
        """
        if self.is_faulted:
            return

        staged = f"{self._staging_folder('upload')}/{posixpath.basename(path)}-{uuid.uuid4()}"
        run = self.run_command if user_permissions else self.sudo_command
        try:
            self.session.safe_file_operation(lambda: self.session.upload(staged, data))
            folder = posixpath.dirname(path)
            if folder:
                run(f"mkdir -p {folder}", options=NONE | RunOptions(fault_on_error=True))
            run(f"if [ -f {staged} ]; then mv {staged} {path}; fi", options=NONE | RunOptions(fault_on_error=True))
        finally:
            self.remove_file(staged)

    def upload_bytes(self, path: str, data: bytes, user_permissions: bool = False) -> None:
        self.upload(path, data, user_permissions=user_permissions)

    def upload_text(
        self,
        path: str,
        text: str,
        tab_stop: int = 0,
        permissions: Optional[str] = None,
        user_permissions: bool = False,
    ) -> None:
        """Upload text with Linux line endings, optionally expanding tabs and setting a chmod mode."""
        self.upload(path, _linux_text(text, tab_stop).encode("utf-8"), user_permissions=user_permissions)
        if permissions and not self.is_faulted:
            run = self.run_command if user_permissions else self.sudo_command
            run(f"chmod {permissions} {path}", options=NONE | RunOptions(fault_on_error=True))

    def download(self, path: str) -> Optional[bytes]:
        """
        Download a file readable only by root.  Returns None when faulted.
        """
        if self.is_faulted:
            return None

        staged = f"{self._staging_folder('download')}/{posixpath.basename(path)}-{uuid.uuid4()}"
        try:
            self.sudo_command(f"cp {path} {staged} && chmod 444 {staged}", options=_HOUSEKEEPING).ensure_success()
            return self.session.safe_file_operation(lambda: self.session.download(staged))
        finally:
            self.remove_file(staged)

    def download_bytes(self, path: str) -> Optional[bytes]:
        return self.download(path)

    def download_text(self, path: str) -> Optional[str]:
        data = self.download(path)
        return None if data is None else data.decode("utf-8")

    def download_to_file(self, source: str, local_path: str | Path) -> None:
        """Download a file the login user can read straight to a local path."""
        if self.is_faulted:
            return
        data = self.session.safe_file_operation(lambda: self.session.download(source))
        Path(local_path).write_bytes(data)

    # ------------------ host utilities ------------------

    def prepare_host_folders(self) -> None:
        """Create the exec, state, tmpfs and tools folders the engine relies on."""
        opts = NONE | RunOptions(fault_on_error=True)
        for folder, mode in (
            (self.exec_root, "777"),
            (self.state_root, "750"),
            (self.tmpfs_root, "770"),
            (self.tools_folder, "750"),
        ):
            self.sudo_command(f"mkdir -p {folder} && chmod {mode} {folder}", options=opts)

    def get_network_interface(self, address: str) -> str:
        response = self.run_command("ip -o address", options=NONE | RunOptions(fault_on_error=True))
        for line in (response.output_text or "").splitlines():
            match = _INTERFACE_RE.match(line)
            if match and match.group("address").strip() == address:
                return match.group("interface")
        raise HiveError(f"Node [{self.name}] has no network interface bound to [{address}].")

    def get_time_utc(self) -> datetime:
        response = self.run_command("date +%s", options=NONE | RunOptions(fault_on_error=True))
        return datetime.fromtimestamp(int((response.output_text or "").strip()), tz=timezone.utc)

    def wait_for_dns_host(self, hostname: str, timeout: float = 60.0, poll: float = 0.5) -> None:
        deadline = time.monotonic() + timeout
        while True:
            if self.run_command("nslookup", hostname, options=_HOUSEKEEPING).exit_code == 0:
                return
            if time.monotonic() >= deadline:
                raise TimeoutError(f"[{hostname}] did not resolve on [{self.name}] within {timeout}s")
            time.sleep(poll)
