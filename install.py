#!/usr/bin/env python3
"""Bootstrap a local clawbridge checkout.

Usage:
    python install.py          # runtime dependencies only
    python install.py --dev    # also pytest + pytest-asyncio
"""

import os
import platform
import shutil
import subprocess
import sys

MIN_PYTHON = (3, 11)
CONFIG_TEMPLATES = [("config.example.yaml", "config.yaml"), (".env.example", ".env")]


def _venv_paths(project_dir: str) -> tuple[str, str]:
    venv_dir = os.path.join(project_dir, ".venv")
    bin_dir = "Scripts" if platform.system() == "Windows" else "bin"
    return venv_dir, os.path.join(venv_dir, bin_dir, "pip")


def _copy_templates(project_dir: str) -> None:
    for template, target in CONFIG_TEMPLATES:
        target_path = os.path.join(project_dir, target)
        template_path = os.path.join(project_dir, template)
        if os.path.exists(target_path):
            print(f"{target} already exists, leaving it alone.")
        elif os.path.exists(template_path):
            shutil.copy(template_path, target_path)
            print(f"Wrote {target} (from {template})")


def main() -> None:
    if sys.version_info < MIN_PYTHON:
        sys.exit(
            f"clawbridge needs Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]} or newer "
            f"(found {sys.version_info.major}.{sys.version_info.minor})."
        )

    project_dir = os.path.dirname(os.path.abspath(__file__))
    venv_dir, pip = _venv_paths(project_dir)

    if os.path.isdir(venv_dir):
        print(f"Reusing virtual environment at {venv_dir}")
    else:
        print(f"Creating virtual environment at {venv_dir}")
        subprocess.check_call([sys.executable, "-m", "venv", venv_dir])

    subprocess.check_call([pip, "install", "--upgrade", "pip"])
    target = ".[dev]" if "--dev" in sys.argv else "."
    subprocess.check_call([pip, "install", "-e", target], cwd=project_dir)

    # paired-users.json lives here
    os.makedirs(os.path.join(project_dir, "data"), exist_ok=True)
    _copy_templates(project_dir)

    activate = r".\.venv\Scripts\activate" if platform.system() == "Windows" else "source .venv/bin/activate"
    print()
    print("clawbridge is installed. Next:")
    print("  - put ANTHROPIC_API_KEY and the bot tokens in .env")
    print("  - set owner_id and the enabled platforms in config.yaml")
    print(f"  - {activate}")
    print("  - clawbridge config-check, then clawbridge start")


if __name__ == "__main__":
    main()
