import numpy as np
import pytest
import trimesh

from mesh2mcstructure.errors import DegenerateMesh, InvalidArgument, VoxelizationCancelled
from mesh2mcstructure.preprocess.voxelize import (
    EMPTY,
    GridSpec,
    OccupancyGrid,
    compute_grid_spec,
    voxelize,
)


def box_at(lo, hi):
    lo, hi = np.asarray(lo, dtype=float), np.asarray(hi, dtype=float)
    transform = trimesh.transformations.translation_matrix((lo + hi) / 2)
    return trimesh.creation.box(extents=hi - lo, transform=transform)


def test_grid_sizing():
    spec = compute_grid_spec(np.array([[0.0, 0.0, 0.0], [10.0, 5.0, 2.0]]), 20)

    assert spec.cell_size == pytest.approx(0.5)
    assert spec.dims == (20, 10, 4)
    assert np.allclose(spec.origin, 0.0)


def test_grid_sizing_thin_axis_gets_one_cell():
    spec = compute_grid_spec(np.array([[0.0, 0.0, 0.0], [1.0, 0.1, 1.0]]), 3)
    assert spec.dims == (3, 1, 3)


def test_unit_cube_is_fully_occupied():
    spec, grid = voxelize(box_at((0, 0, 0), (1, 1, 1)), 4)

    assert spec.dims == (4, 4, 4)
    assert spec.cell_size == pytest.approx(0.25)
    assert grid.occupied_count == 64
    assert np.all(grid.primary == 0)
    assert np.all(grid.secondary == EMPTY)


def test_gap_between_cubes_stays_empty():
    mesh = trimesh.util.concatenate([box_at((0, 0, 0), (1, 1, 1)), box_at((2, 0, 0), (3, 1, 1))])
    spec, grid = voxelize(mesh, 6)

    assert spec.dims == (6, 2, 2)
    solid = grid.to_solid(spec.dims)
    assert solid[[0, 1, 4, 5]].all()
    assert not solid[[2, 3]].any()


def test_voxelized_cells_follow_flat_index_order():
    mesh = trimesh.util.concatenate([box_at((0, 0, 0), (1, 1, 1)), box_at((2, 1, 0), (3, 2, 1))])
    spec, grid = voxelize(mesh, 3)

    assert spec.dims == (3, 2, 1)
    assert np.flatnonzero(grid.primary == 0).tolist() == [
        spec.flat_index(0, 0, 0),
        spec.flat_index(2, 1, 0),
    ]
    assert spec.flat_index(2, 1, 0) == 5


def test_sphere_volume_and_accelerators_agree():
    mesh = trimesh.creation.icosphere(subdivisions=2, radius=1.0)

    spec, rtree_grid = voxelize(mesh, 8, accelerator="rtree")
    _, brute_grid = voxelize(mesh, 8, accelerator="brute_force")

    np.testing.assert_array_equal(rtree_grid.primary, brute_grid.primary)
    frac = rtree_grid.occupied_count / spec.count
    assert 0.4 < frac < 0.6  # pi / 6 for a perfect sphere


@pytest.mark.parametrize("accelerator", ["rtree", "brute_force"])
def test_touching_cubes_are_fully_occupied(accelerator):
    # the shared face at x=1 is crossed twice, once leaving and once entering
    mesh = trimesh.util.concatenate([box_at((0, 0, 0), (1, 1, 1)), box_at((1, 0, 0), (2, 1, 1))])
    spec, grid = voxelize(mesh, 8, accelerator=accelerator)

    assert spec.dims == (8, 4, 4)
    assert grid.occupied_count == 128
    assert np.all(grid.primary == 0)


def test_touching_cubes_accelerators_agree():
    mesh = trimesh.util.concatenate([box_at((0, 0, 0), (1, 1, 1)), box_at((1, 0, 0), (2, 1, 1))])

    _, rtree_grid = voxelize(mesh, 8, accelerator="rtree")
    _, brute_grid = voxelize(mesh, 8, accelerator="brute_force")

    np.testing.assert_array_equal(rtree_grid.primary, brute_grid.primary)


def test_workers_do_not_change_result():
    mesh = trimesh.creation.icosphere(subdivisions=2, radius=1.0)

    _, serial = voxelize(mesh, 8)
    _, threaded = voxelize(mesh, 8, workers=3, batch_size=5)

    np.testing.assert_array_equal(serial.primary, threaded.primary)
    np.testing.assert_array_equal(serial.secondary, threaded.secondary)


def test_cancel_between_batches():
    calls = []

    def should_cancel():
        calls.append(1)
        return len(calls) > 2

    with pytest.raises(VoxelizationCancelled):
        voxelize(box_at((0, 0, 0), (1, 1, 1)), 8, batch_size=4, should_cancel=should_cancel)
    assert len(calls) == 3


def test_empty_mesh_uses_unit_cube():
    spec, grid = voxelize(trimesh.Trimesh(), 4)

    assert spec.dims == (4, 4, 4)
    assert spec.cell_size == pytest.approx(0.25)
    assert grid.occupied_count == 64


def test_none_mesh_uses_unit_cube():
    spec, grid = voxelize(None, 2)
    assert spec.dims == (2, 2, 2)
    assert grid.occupied_count == 8


def test_coincident_vertices_are_degenerate():
    mesh = trimesh.Trimesh(
        vertices=[[1.0, 1.0, 1.0]] * 3,
        faces=[[0, 1, 2]],
        process=False,
    )
    with pytest.raises(DegenerateMesh):
        voxelize(mesh, 8)


def test_flat_open_surface_has_no_interior():
    square = trimesh.Trimesh(
        vertices=[[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0]],
        faces=[[0, 1, 2], [0, 2, 3]],
        process=False,
    )
    spec, grid = voxelize(square, 4)

    assert spec.dims == (4, 4, 1)
    assert grid.occupied_count == 0


@pytest.mark.parametrize("max_dim", [0, -3, 2.5, True, "8", None])
def test_invalid_max_dim(max_dim):
    with pytest.raises(InvalidArgument):
        voxelize(box_at((0, 0, 0), (1, 1, 1)), max_dim)


def test_unknown_accelerator():
    with pytest.raises(InvalidArgument):
        voxelize(box_at((0, 0, 0), (1, 1, 1)), 4, accelerator="octree")


def test_mesh_is_not_modified():
    mesh = trimesh.creation.icosphere(subdivisions=1)
    vertices = mesh.vertices.copy()
    faces = mesh.faces.copy()

    voxelize(mesh, 6)

    np.testing.assert_array_equal(mesh.vertices, vertices)
    np.testing.assert_array_equal(mesh.faces, faces)


def test_from_solid_flat_index():
    spec = GridSpec(dims=(2, 2, 2), cell_size=1.0, origin=np.zeros(3))
    solid = np.zeros((2, 2, 2), dtype=bool)
    solid[1, 0, 1] = True

    grid = OccupancyGrid.from_solid(solid, secondary_solid=solid)

    assert spec.flat_index(1, 0, 1) == 5
    assert np.flatnonzero(grid.primary == 0).tolist() == [5]
    assert np.flatnonzero(grid.secondary == 0).tolist() == [5]
    np.testing.assert_array_equal(grid.to_solid(spec.dims), solid)


def test_occupancy_layers_must_match():
    with pytest.raises(InvalidArgument):
        OccupancyGrid(primary=np.zeros(4), secondary=np.zeros(3))
