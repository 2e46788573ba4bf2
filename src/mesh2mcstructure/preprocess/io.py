from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import logging

import trimesh

from .voxelize import fallback_mesh

logger = logging.getLogger(__name__)


@dataclass
class LoadedMesh:
    """Unified result for either a single mesh or a scene with multiple geometries."""
    mesh: Optional[trimesh.Trimesh] = None
    scene: Optional[trimesh.Scene] = None
    path: Optional[str] = None

    def as_single_mesh(self) -> trimesh.Trimesh:
        """
        Convert scene -> one concatenated triangle mesh in scene space.

        Node transforms are applied. Non-triangle geometry (paths, point
        clouds) is skipped; if nothing is left the unit cube fallback is
        returned instead of failing.
        """
        if self.mesh is not None:
            if len(self.mesh.faces) == 0:
                logger.warning("%s has no triangles, using unit cube", self.path)
                return fallback_mesh()
            return self.mesh
        assert self.scene is not None

        geometries = self.scene.dump(concatenate=False)
        meshes = [g for g in geometries if isinstance(g, trimesh.Trimesh) and len(g.faces) > 0]
        skipped = len(geometries) - len(meshes)
        if skipped:
            logger.warning("Skipped %d non-triangle geometries in %s", skipped, self.path)
        if len(meshes) == 0:
            logger.warning("%s contains no triangle meshes, using unit cube", self.path)
            return fallback_mesh()
        if len(meshes) == 1:
            return meshes[0]
        return trimesh.util.concatenate(meshes)


def load_mesh(
    path: Union[str, Path],
    *,
    force: str = "scene",
    process: bool = True,
) -> LoadedMesh:
    """
    Load mesh/scene using trimesh.

    Parameters
    ----------
    path : str | Path
        any format trimesh reads (glb, gltf, obj, stl, ply, ...)
    force : "mesh" | "scene"
        - "scene": keep node transforms so ``as_single_mesh`` can apply them
        - "mesh": ask trimesh for a single mesh directly
    process : bool
        trimesh processing (merging vertices etc.)

    Returns
    -------
    LoadedMesh
    """
    path = str(Path(path))
    obj = trimesh.load(path, force=force, process=process)

    if isinstance(obj, trimesh.Trimesh):
        return LoadedMesh(mesh=obj, scene=None, path=path)
    if isinstance(obj, trimesh.Scene):
        return LoadedMesh(mesh=None, scene=obj, path=path)

    raise TypeError(f"Unsupported trimesh load result type: {type(obj)}")


def save_structure(path: Union[str, Path], data: bytes) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(data)
    return p
