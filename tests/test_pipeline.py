import numpy as np
import pytest
import trimesh

from mesh2mcstructure import (
    DegenerateMesh,
    InvalidArgument,
    convert_file,
    mesh_to_mcstructure,
)
from mesh2mcstructure.preprocess.io import LoadedMesh, load_mesh
from mesh2mcstructure.structure import decode_structure
from mesh2mcstructure.utils import structure_filename


def test_pipeline_is_deterministic():
    mesh = trimesh.creation.icosphere(subdivisions=2, radius=2.0)

    first = mesh_to_mcstructure(mesh, 10, "minecraft:stone")
    second = mesh_to_mcstructure(mesh, 10, "minecraft:stone")

    assert first == second


def test_pipeline_round_trip():
    mesh = trimesh.creation.box(extents=(10.0, 5.0, 2.0))

    decoded = decode_structure(mesh_to_mcstructure(mesh, 20, "minecraft:glass"))

    assert decoded.size == (20, 10, 4)
    assert decoded.primary.shape == (800,)
    assert np.all(decoded.primary == 0)
    assert np.all(decoded.secondary == -1)
    (block,) = decoded.palette.blocks
    assert block.name == "minecraft:glass"
    assert block.version == 17959425


def test_block_id_is_stripped():
    decoded = decode_structure(mesh_to_mcstructure(None, 2, "  minecraft:dirt "))
    assert decoded.palette.blocks[0].name == "minecraft:dirt"


@pytest.mark.parametrize("block_id", ["", "   ", None, 1])
def test_invalid_block_id(block_id):
    with pytest.raises(InvalidArgument):
        mesh_to_mcstructure(trimesh.creation.box(), 4, block_id)


def test_invalid_max_dim():
    with pytest.raises(InvalidArgument):
        mesh_to_mcstructure(trimesh.creation.box(), 0, "minecraft:stone")


def test_degenerate_mesh():
    mesh = trimesh.Trimesh(vertices=[[0.0, 0.0, 0.0]] * 3, faces=[[0, 1, 2]], process=False)
    with pytest.raises(DegenerateMesh):
        mesh_to_mcstructure(mesh, 4, "minecraft:stone")


def test_empty_mesh_falls_back_to_cube():
    decoded = decode_structure(mesh_to_mcstructure(trimesh.Trimesh(), 4, "minecraft:stone"))

    assert decoded.size == (4, 4, 4)
    assert int(np.count_nonzero(decoded.primary == 0)) == 64


def test_convert_file(tmp_path):
    src = tmp_path / "cube.glb"
    trimesh.creation.box(extents=(2.0, 2.0, 2.0)).export(src)

    out = convert_file(src, tmp_path / "out", max_dim=4, block_id="minecraft:stone")

    assert out == tmp_path / "out" / "cube.mcstructure"
    decoded = decode_structure(out.read_bytes())
    assert decoded.size == (4, 4, 4)
    assert int(np.count_nonzero(decoded.primary == 0)) == 64


def test_load_scene_applies_transforms(tmp_path):
    scene = trimesh.Scene()
    scene.add_geometry(trimesh.creation.box(), node_name="a")
    scene.add_geometry(
        trimesh.creation.box(),
        node_name="b",
        transform=trimesh.transformations.translation_matrix((3.0, 0.0, 0.0)),
    )
    src = tmp_path / "pair.glb"
    scene.export(src)

    mesh = load_mesh(src).as_single_mesh()

    np.testing.assert_allclose(mesh.bounds, [[-0.5, -0.5, -0.5], [3.5, 0.5, 0.5]], atol=1e-6)


def test_empty_scene_falls_back_to_cube():
    mesh = LoadedMesh(scene=trimesh.Scene()).as_single_mesh()
    np.testing.assert_allclose(mesh.extents, [1.0, 1.0, 1.0])


@pytest.mark.parametrize(
    "name, expected",
    [
        ("chair.glb", "chair.mcstructure"),
        ("Chair.GLTF", "Chair.mcstructure"),
        ("chair.obj", "chair.obj.mcstructure"),
        (".glb", "model.mcstructure"),
    ],
)
def test_structure_filename(name, expected):
    assert structure_filename(name) == expected
