"""Synthesized template output directory.

``ec2efs synth`` writes one template per stack plus ``manifest.yml`` into the
output directory (``ec2efs.out`` by default). Writes are atomic so a reader
never sees a half-written template.
"""
from __future__ import annotations

import json
import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

try:  # PyYAML is a runtime dependency declared in pyproject.toml
    import yaml
except Exception as exc:  # pragma: no cover - import failure handled in tests
    raise RuntimeError(
        "PyYAML is required to write ec2efs artifacts. Install with `pip install ec2efs`."
    ) from exc

from .errors import Ec2EfsError

MANIFEST_NAME = "manifest.yml"


class ArtifactStoreError(Ec2EfsError):
    """Raised when artifacts cannot be read or written."""


def dump_template(template: Mapping[str, object], output_format: str = "json") -> str:
    """Serialise a synthesized template as JSON or YAML text."""
    if output_format == "json":
        return json.dumps(template, indent=2) + "\n"
    if output_format == "yaml":
        return yaml.safe_dump(dict(template), sort_keys=False)
    raise ArtifactStoreError(f"Unsupported template format '{output_format}'.")


@dataclass(frozen=True)
class ArtifactStore:
    """Read and write synthesized artifacts under *root*."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", self.root.expanduser())

    def ensure_root(self) -> None:
        """Create the output directory if it does not yet exist."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ArtifactStoreError(f"Cannot create output directory {self.root}: {exc}") from exc

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    def template_path(self, stack_name: str, output_format: str = "json") -> Path:
        """Return the path of the template for *stack_name*."""
        return self.root / f"{stack_name}.template.{output_format}"

    def write_template(
        self,
        stack_name: str,
        template: Mapping[str, object],
        *,
        output_format: str = "json",
        metadata: Mapping[str, object] | None = None,
    ) -> Path:
        """Write *template* and record it in the manifest."""
        path = self.template_path(stack_name, output_format)
        self._atomic_write(path, dump_template(template, output_format))

        manifest = self.read_manifest()
        stacks = manifest.setdefault("stacks", {})
        if not isinstance(stacks, dict):
            raise ArtifactStoreError(f"Manifest {self.root / MANIFEST_NAME} is malformed.")
        entry: dict[str, object] = {
            "template": path.name,
            "format": output_format,
            "written_at": datetime.now(UTC).isoformat(),
        }
        if metadata:
            entry["metadata"] = dict(metadata)
        stacks[stack_name] = entry
        self._atomic_write(
            self.root / MANIFEST_NAME,
            yaml.safe_dump(manifest, sort_keys=False),
        )
        return path

    def read_manifest(self) -> dict[str, object]:
        """Return the manifest contents (empty mapping when missing)."""
        path = self.root / MANIFEST_NAME
        if not path.exists():
            return {"version": 1, "stacks": {}}
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
            raise ArtifactStoreError(f"Failed to parse manifest {path}: {exc}") from exc
        if data is None:
            return {"version": 1, "stacks": {}}
        if not isinstance(data, dict):
            raise ArtifactStoreError(f"Manifest {path} must contain a mapping.")
        return data

    # ------------------------------------------------------------------
    def _atomic_write(self, path: Path, text: str) -> None:
        self.ensure_root()
        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(tmp_path, path)
            os.chmod(path, 0o644)
        finally:
            tmp_path.unlink(missing_ok=True)


__all__ = ["ArtifactStore", "ArtifactStoreError", "MANIFEST_NAME", "dump_template"]
