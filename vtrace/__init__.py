"""
vtrace — Version numbers traced from Git history.

Derives a deterministic, monotonically increasing version for any commit
by walking its ancestry back to the nearest version tags, and keeps a
persistent, differentially updated tag cache so repeated lookups stay
cheap on repositories with many tags.
"""

from pathlib import Path
import tomllib
from importlib.metadata import version, PackageNotFoundError

def _resolve_version() -> str:
    """Resolve the vtrace package version.

    Priority:
    1) Local source checkout version from pyproject.toml (if present)
    2) Installed package metadata (vtrace)
    3) Safe fallback
    """
    try:
        root = Path(__file__).resolve().parent.parent
        pyproject = root / "pyproject.toml"
        if pyproject.exists():
            data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
            proj = data.get("project", {})
            ver = proj.get("version")
            if isinstance(ver, str) and ver.strip():
                return ver.strip()
    except Exception:
        pass

    try:
        return version("vtrace")
    except PackageNotFoundError:
        return "0.0.0"


__version__ = _resolve_version()
