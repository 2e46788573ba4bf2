from __future__ import annotations
from dataclasses import dataclass
from typing import List, Literal

import logging

import numpy as np
import trimesh

from ..errors import InvalidArgument

logger = logging.getLogger(__name__)

Accelerator = Literal["rtree", "embree", "brute_force"]
ACCELERATORS = ("rtree", "embree", "brute_force")
DEFAULT_ACCELERATOR: Accelerator = "rtree"

# hits closer than this along one ray are treated as the same point
MERGE_TOL = 1e-6

# rays x triangles evaluated at once by the brute force path
_BRUTE_FORCE_CHUNK = 1 << 18


@dataclass
class RayHits:
    locations: np.ndarray   # (N,3)
    index_ray: np.ndarray   # (N,) which input ray
    index_tri: np.ndarray   # (N,) which mesh triangle
    distances: np.ndarray   # (N,) position along the normalized ray


class _BruteForceIntersector:
    """Moller-Trumbore against every triangle, vectorized over (ray, triangle) pairs."""

    def __init__(self, triangles: np.ndarray):
        self._v0 = triangles[:, 0]
        self._e1 = triangles[:, 1] - self._v0
        self._e2 = triangles[:, 2] - self._v0

    def intersects_location(self, ray_origins, ray_directions, multiple_hits=True):
        n_tri = len(self._v0)
        step = max(1, _BRUTE_FORCE_CHUNK // max(n_tri, 1))

        locs, rays, tris = [], [], []
        for start in range(0, len(ray_origins), step):
            o = ray_origins[start:start + step]
            d = ray_directions[start:start + step]

            h = np.cross(d[:, None, :], self._e2[None, :, :])          # (R,T,3)
            a = np.einsum("tk,rtk->rt", self._e1, h)
            parallel = np.abs(a) < 1e-12
            f = np.divide(1.0, a, out=np.zeros_like(a), where=~parallel)

            s = o[:, None, :] - self._v0[None, :, :]
            u = f * np.einsum("rtk,rtk->rt", s, h)
            q = np.cross(s, self._e1[None, :, :])
            v = f * np.einsum("rk,rtk->rt", d, q)
            t = f * np.einsum("tk,rtk->rt", self._e2, q)

            eps = 1e-9
            hit = (~parallel) & (u >= -eps) & (v >= -eps) & (u + v <= 1.0 + eps) & (t > eps)
            r_idx, t_idx = np.nonzero(hit)
            locs.append(o[r_idx] + d[r_idx] * t[r_idx, t_idx][:, None])
            rays.append(r_idx + start)
            tris.append(t_idx)

        if not locs:
            return np.zeros((0, 3)), np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.int64)
        return np.concatenate(locs), np.concatenate(rays), np.concatenate(tris)


class _TriangleTreeIntersector:
    """
    trimesh's r-tree candidate search plus exact triangle tests.

    Calls ``ray_triangle_id`` directly: ``RayMeshIntersector`` drops hits
    sharing a location on one ray, which loses one side of two touching
    surfaces.
    """

    def __init__(self, mesh: trimesh.Trimesh):
        # trimesh caches these lazily; build them before threads share the mesh
        self._triangles = np.asarray(mesh.triangles, dtype=np.float64)
        self._tree = mesh.triangles_tree
        self._normals = np.asarray(mesh.face_normals, dtype=np.float64)

    def intersects_location(self, ray_origins, ray_directions, multiple_hits=True):
        from trimesh.ray.ray_triangle import ray_triangle_id

        index_tri, index_ray, locations = ray_triangle_id(
            triangles=self._triangles,
            ray_origins=ray_origins,
            ray_directions=ray_directions,
            tree=self._tree,
            multiple_hits=multiple_hits,
            triangles_normal=self._normals,
        )
        return locations, index_ray, index_tri


def _build_intersector(mesh: trimesh.Trimesh, accelerator: str):
    if accelerator == "rtree":
        return _TriangleTreeIntersector(mesh)
    if accelerator == "embree":
        try:
            from trimesh.ray.ray_pyembree import RayMeshIntersector
        except ImportError as exc:
            raise InvalidArgument(
                "accelerator='embree' needs the embreex package (pip install embreex)"
            ) from exc
        return RayMeshIntersector(mesh)
    if accelerator == "brute_force":
        return _BruteForceIntersector(np.asarray(mesh.triangles, dtype=np.float64))
    raise InvalidArgument(f"Unknown accelerator: {accelerator!r} (expected one of {ACCELERATORS})")


class RayQuery:
    """
    All-hits ray queries against one mesh.

    The acceleration strategy is chosen once here. Queries only read the
    mesh and the index built at construction, so one instance can serve
    several threads.

    "rtree" and "brute_force" report every triangle hit. "embree" re-casts
    each ray from just past its previous hit, so of two surfaces meeting at
    one point (touching parts) it sees only one; use it for meshes whose
    parts do not touch.
    """

    def __init__(self, mesh: trimesh.Trimesh, *, accelerator: Accelerator = DEFAULT_ACCELERATOR):
        self.accelerator = accelerator
        self._intersector = _build_intersector(mesh, accelerator)

        tri = np.asarray(mesh.triangles, dtype=np.float64)
        # unnormalized winding normals; only their sign against a ray is used
        self._normals = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
        logger.debug("RayQuery(%s) over %d triangles", accelerator, len(tri))

    def intersect(self, origins: np.ndarray, directions: np.ndarray) -> RayHits:
        """Every intersection of every ray, not just the closest."""
        origins = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        directions = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
        directions = directions / np.linalg.norm(directions, axis=1, keepdims=True)

        if len(origins) == 0:
            empty = np.zeros(0, dtype=np.int64)
            return RayHits(np.zeros((0, 3)), empty, empty, np.zeros(0))

        locations, index_ray, index_tri = self._intersector.intersects_location(
            origins, directions, multiple_hits=True
        )
        locations = np.asarray(locations, dtype=np.float64).reshape(-1, 3)
        index_ray = np.asarray(index_ray, dtype=np.int64)
        index_tri = np.asarray(index_tri, dtype=np.int64)
        distances = np.einsum("ij,ij->i", locations - origins[index_ray], directions[index_ray])
        return RayHits(locations, index_ray, index_tri, distances)

    def crossings(self, origins: np.ndarray, direction: np.ndarray) -> List[np.ndarray]:
        """
        Sorted crossing distances for each ray sharing one ``direction``.

        A ray through an edge or vertex is reported once per triangle touching
        it. Hits at the same spot whose triangles face the same way relative
        to the ray collapse into one crossing; opposite-facing hits stay, so
        a ray grazing a silhouette still enters and leaves.
        """
        origins = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        direction = np.asarray(direction, dtype=np.float64).reshape(3)
        n_rays = len(origins)
        if n_rays == 0:
            return []
        hits = self.intersect(origins, np.broadcast_to(direction, origins.shape))
        if len(hits.index_ray) == 0:
            return [np.zeros(0) for _ in range(n_rays)]

        facing = np.sign(self._normals[hits.index_tri] @ direction).astype(np.int8)
        ray, dist = hits.index_ray, hits.distances

        order = np.lexsort((dist, ray))
        ray, dist, facing = ray[order], dist[order], facing[order]

        # clusters of hits that sit at one point of one ray
        starts = np.ones(len(ray), dtype=bool)
        starts[1:] = (ray[1:] != ray[:-1]) | (np.diff(dist) > MERGE_TOL)
        cluster = np.cumsum(starts)

        order = np.lexsort((facing, cluster))
        c, f = cluster[order], facing[order]
        keep = np.ones(len(order), dtype=bool)
        keep[1:] = (c[1:] != c[:-1]) | (f[1:] != f[:-1])
        kept = np.sort(order[keep])

        ray, dist = ray[kept], dist[kept]
        bounds = np.searchsorted(ray, np.arange(1, n_rays))
        return np.split(dist, bounds)
