import base64
import os

import cv2
import numpy as np
import pytest

from styleloop_viewer.feedback import FeedbackStatus, FrameExporter, TextureFeedback
from styleloop_viewer.materials import SolidMaterial, TexturedMaterial
from styleloop_viewer.tensor_bridge import StylizedFrame


def make_frame(sequence=None, size=(16, 16), value=0):
    height, width = size
    pixels = np.full((height, width, 3), value, dtype=np.uint8)
    return StylizedFrame(pixels=pixels, width=width, height=height, sequence=sequence)


def test_apply_swaps_in_new_texture_and_deletes_previous(texture_factory, textured_material):
    initial = textured_material.albedo_texture
    feedback = TextureFeedback(texture_factory)

    status = feedback.apply(make_frame(1, size=(8, 12)), textured_material)

    assert status is FeedbackStatus.APPLIED
    new_texture = textured_material.albedo_texture
    assert new_texture is texture_factory.created[-1]
    assert (new_texture.width, new_texture.height) == (12, 8)
    assert new_texture.sampling == "nearest"
    assert initial.deleted
    assert feedback.last_sequence == 1


def test_exactly_one_live_texture_after_many_applies(texture_factory, textured_material):
    feedback = TextureFeedback(texture_factory)
    for sequence in range(1, 11):
        feedback.apply(make_frame(sequence, value=sequence), textured_material)

    assert texture_factory.live == [textured_material.albedo_texture]
    assert all(t.delete_calls <= 1 for t in texture_factory.created)
    assert feedback.live_textures == 1
    assert feedback.textures_adopted == 1
    assert int(textured_material.albedo_texture.pixels[0, 0, 0]) == 10


def test_live_textures_without_an_initial_texture(texture_factory):
    material = TexturedMaterial("surface")
    feedback = TextureFeedback(texture_factory)
    for sequence in range(1, 6):
        feedback.apply(make_frame(sequence), material)

    assert feedback.live_textures == 1
    assert feedback.textures_adopted == 0
    assert texture_factory.live == [material.albedo_texture]


def test_material_without_texture_slot_is_left_alone(texture_factory):
    feedback = TextureFeedback(texture_factory)
    material = SolidMaterial("gold")

    assert feedback.apply(make_frame(1), material) is FeedbackStatus.MATERIAL_MISMATCH
    assert feedback.apply(make_frame(2), material) is FeedbackStatus.MATERIAL_MISMATCH
    assert texture_factory.created == []
    assert feedback.textures_deleted == 0
    assert feedback.last_sequence is None


def test_mismatch_warning_is_printed_once(texture_factory, capsys):
    feedback = TextureFeedback(texture_factory)
    material = SolidMaterial("gold")
    feedback.apply(make_frame(1), material)
    feedback.apply(make_frame(2), material)
    assert capsys.readouterr().out.count("Warning:") == 1


def test_stale_frames_are_dropped(texture_factory, textured_material):
    feedback = TextureFeedback(texture_factory)
    feedback.apply(make_frame(5), textured_material)
    current = textured_material.albedo_texture

    assert feedback.apply(make_frame(5), textured_material) is FeedbackStatus.STALE_FRAME
    assert feedback.apply(make_frame(3), textured_material) is FeedbackStatus.STALE_FRAME
    assert textured_material.albedo_texture is current
    assert not current.deleted


def test_frames_without_sequence_are_always_applied(texture_factory):
    material = TexturedMaterial("surface")
    feedback = TextureFeedback(texture_factory, sampling="linear")
    feedback.apply(make_frame(), material)
    feedback.apply(make_frame(), material)
    assert len(texture_factory.created) == 2
    assert texture_factory.created[0].deleted
    assert material.albedo_texture.sampling == "linear"


class RecordingExporter:
    def __init__(self):
        self.frames = []

    def submit(self, frame):
        self.frames.append(frame.sequence)


def test_applied_frames_are_handed_to_the_exporter(texture_factory, textured_material):
    exporter = RecordingExporter()
    feedback = TextureFeedback(texture_factory, exporter=exporter)
    feedback.apply(make_frame(1), textured_material)
    feedback.apply(make_frame(1), textured_material)
    feedback.apply(make_frame(2), textured_material)
    assert exporter.frames == [1, 2]


class TestFrameExporter:
    def test_exports_data_url_and_file(self, tmp_path):
        exporter = FrameExporter(str(tmp_path), "png")
        frame = make_frame(4, size=(10, 20), value=200)
        try:
            data_url = exporter.submit(frame).result(timeout=10)
        finally:
            exporter.close()

        assert data_url.startswith("data:image/png;base64,")
        assert exporter.latest_data_url == data_url
        assert exporter.exported == 1
        path = tmp_path / "stylized_000004.png"
        assert path.exists()
        written = cv2.imread(str(path), cv2.IMREAD_COLOR)
        assert written.shape == (10, 20, 3)
        assert int(written[0, 0, 0]) == 200

    def test_jpeg_data_url_without_export_dir(self):
        exporter = FrameExporter()
        try:
            data_url = exporter.submit(make_frame(1)).result(timeout=10)
        finally:
            exporter.close()
        header, payload = data_url.split(",", 1)
        assert header == "data:image/jpeg;base64"
        assert base64.b64decode(payload)[:2] == b"\xff\xd8"

    def test_submitted_pixels_are_copied(self, tmp_path):
        exporter = FrameExporter(str(tmp_path), "png")
        frame = make_frame(1, value=10)
        future = exporter.submit(frame)
        frame.pixels[:] = 99
        future.result(timeout=10)
        exporter.close()
        written = cv2.imread(str(tmp_path / "stylized_000001.png"), cv2.IMREAD_COLOR)
        assert int(written[0, 0, 0]) == 10

    def test_unwritable_directory_counts_a_failure(self, tmp_path):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("")
        exporter = FrameExporter(os.path.join(str(blocker), "frames"), "png")
        try:
            assert exporter.submit(make_frame(1)).result(timeout=10) is None
        finally:
            exporter.close()
        assert exporter.failed == 1
        assert exporter.exported == 0

    def test_unknown_format_counts_a_failure(self):
        exporter = FrameExporter(image_format="bmp")
        try:
            assert exporter.submit(make_frame(1)).result(timeout=10) is None
        finally:
            exporter.close()
        assert exporter.failed == 1


@pytest.mark.parametrize("sampling", ["nearest", "linear"])
def test_sampling_is_passed_to_the_factory(texture_factory, sampling):
    material = TexturedMaterial("surface")
    TextureFeedback(texture_factory, sampling=sampling).apply(make_frame(1), material)
    assert material.albedo_texture.sampling == sampling
