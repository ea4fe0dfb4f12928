from .args import ARG_BREAK, format_command, normalize_args
from .bundle import CommandBundle, CommandFile, RUN_SCRIPT, pack_bundle

__all__ = [
    "ARG_BREAK",
    "CommandBundle",
    "CommandFile",
    "RUN_SCRIPT",
    "format_command",
    "normalize_args",
    "pack_bundle",
]
