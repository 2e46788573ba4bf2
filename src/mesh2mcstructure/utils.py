from pathlib import Path
import re

from mesh2mcstructure.structure.mcstructure import FILE_SUFFIX

_MODEL_SUFFIX = re.compile(r"\.(glb|gltf)$", re.IGNORECASE)


def structure_filename(input_path: Path | str) -> str:
    """model.GLB -> model.mcstructure; other suffixes are kept in the stem."""
    name = _MODEL_SUFFIX.sub("", Path(input_path).name)
    return (name or "model") + FILE_SUFFIX
