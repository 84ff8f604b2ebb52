"""Version helpers."""

from pathlib import Path

import tomlkit

PYPROJECT_FILE = Path(__file__).resolve().parent.parent.parent / "pyproject.toml"


def get_pyproject_version(toml_file: Path = PYPROJECT_FILE) -> str:
    """Get TrackBridge's version from the pyproject.toml file.

    Args:
        toml_file (Path): Path of the pyproject.toml to read

    Returns:
        str: TrackBridge's version, or "unknown" if it cannot be determined
    """
    if not toml_file.is_file():
        return "unknown"

    with toml_file.open(encoding="utf-8") as f:
        toml_data = tomlkit.load(f)

    project = toml_data.get("project", {})
    version = project.get("version")
    return str(version) if version else "unknown"
