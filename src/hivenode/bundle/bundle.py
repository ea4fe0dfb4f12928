# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/hivenode/bundle/bundle.py

from __future__ import annotations

import io
import tarfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, List, Optional

from hivenode.errors import BundleError
from .args import format_command, normalize_args, to_bash

RUN_SCRIPT = "__run.sh"


@dataclass
class CommandFile:
    """
    A file shipped with a bundle.  Exactly one of ``text`` / ``data`` is set.
    """
    path: str
    text: Optional[str] = None
    data: Optional[bytes] = None
    is_executable: bool = False

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        if not self.path or not self.path.strip():
            raise BundleError("Bundle file path is required.")
        if self.path.startswith("/"):
            raise BundleError(f"Bundle file path [{self.path}] must be relative.")
        if self.text is not None and self.data is not None:
            raise BundleError(f"Bundle file [{self.path}] has both text and binary content.")
        if self.text is None and self.data is None:
            raise BundleError(f"Bundle file [{self.path}] has no content.")

    @property
    def payload(self) -> bytes:
        if self.data is not None:
            return self.data
        return (self.text or "").encode("utf-8")


def _linux_text(text: str, tab_stop: int = 4) -> str:
    return "".join(line.expandtabs(tab_stop) + "\n" for line in text.splitlines())


class CommandBundle:
    """
    A command plus the files it needs, uploaded and unpacked together on the
    node and executed from the unpack folder.
    """

    def __init__(self, command: str, *args: Any):
        if not command or not command.strip():
            raise BundleError("Bundle command is required.")
        self.command = command.replace("\r\n", "\n")
        self.args = list(args)
        self.files: List[CommandFile] = []

    @classmethod
    def from_script(cls, script: str) -> "CommandBundle":
        bundle = cls("./script.sh")
        bundle.add_file("script.sh", script, is_executable=True)
        return bundle

    def __iter__(self) -> Iterator[CommandFile]:
        return iter(self.files)

    def __len__(self) -> int:
        return len(self.files)

    def add_file(
        self,
        path: str,
        content: str | bytes | None,
        is_executable: bool = False,
        linux_compatible: bool = True,
    ) -> CommandFile:
        """
        Add a text (str) or binary (bytes) file.  Text is normalized to Linux
        line endings with tabs expanded unless ``linux_compatible=False``.
        """
        if isinstance(content, (bytes, bytearray)):
            file = CommandFile(path=path, data=bytes(content), is_executable=is_executable)
        else:
            text = content or ""
            if linux_compatible:
                text = _linux_text(text)
            file = CommandFile(path=path, text=text, is_executable=is_executable)

        self.files.append(file)
        return file

    def add_directory(self, path: str, source_dir: str | Path) -> CommandFile:
        """
        Pack a local folder into a gzip'd tar and add it as ``path``.
        """
        source = Path(source_dir)
        if not source.is_dir():
            raise BundleError(f"[{source}] is not a directory.")

        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w:gz") as tar:
            for item in sorted(source.rglob("*")):
                if item.is_file():
                    tar.add(str(item), arcname=item.relative_to(source).as_posix())
        return self.add_file(path, buf.getvalue())

    def validate(self) -> None:
        for file in self.files:
            file.validate()

    def format_command(self) -> str:
        return format_command(self.command, *self.args)

    def to_bash(self, comment: Optional[str] = None) -> str:
        return to_bash(self.command, self.args, comment=comment)

    def __str__(self) -> str:
        return " ".join([self.command, *normalize_args(self.args)])

    def __repr__(self) -> str:
        return f"CommandBundle({self.command!r}, files={len(self.files)})"


def pack_bundle(bundle: CommandBundle, run_script: str) -> bytes:
    """
    Returns a gzip'd tar holding every bundle file plus ``__run.sh``.
    """
    bundle.validate()

    mtime = time.time()
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        entries = [(f.path, f.payload) for f in bundle]
        entries.append((RUN_SCRIPT, run_script.encode("utf-8")))
        for path, payload in entries:
            info = tarfile.TarInfo(name=path)
            info.size = len(payload)
            info.mode = 0o644
            info.mtime = mtime
            tar.addfile(info, io.BytesIO(payload))
    return buf.getvalue()
