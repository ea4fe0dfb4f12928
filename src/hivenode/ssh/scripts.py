# src/hivenode/ssh/scripts.py
from pathlib import Path
from typing import Iterable, Optional

from jinja2 import Environment, FileSystemLoader

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"


class ScriptRenderer:
    def __init__(self, templates_dir: Path = TEMPLATES_DIR):
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=False,
            keep_trailing_newline=True,
        )

    def render(self, template_name: str, context: dict) -> str:
        tmpl = self.env.get_template(template_name)
        # Remote scripts always get Linux line endings.
        return tmpl.render(**context).replace("\r", "")


_renderer = ScriptRenderer()


def safe_command_script(folder: str, command: str) -> str:
    return _renderer.render("cmd.sh.j2", {"folder": folder, "command": command})


def bundle_run_script(command: str, executables: Iterable[str], mode: int) -> str:
    return _renderer.render(
        "run.sh.j2",
        {"command": command, "executables": list(executables), "mode": mode},
    )


def user_script(command: str, remote_path: Optional[str] = None) -> str:
    return _renderer.render("script.sh.j2", {"command": command, "remote_path": remote_path})
