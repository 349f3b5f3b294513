import os
import enum
import concurrent.futures

from .file_io import encode_data_url, save_frame, frame_filename
from .materials import TexturedMaterial


class FeedbackStatus(enum.Enum):
    APPLIED = "applied"
    MATERIAL_MISMATCH = "material_mismatch"
    STALE_FRAME = "stale_frame"


class TextureFeedback:
    """Swaps stylized frames onto a material's albedo texture.

    ``texture_factory(pixels, width, height, sampling)`` builds the texture
    resource; whatever it returns must provide ``delete()``. The new texture is
    assigned before the old one is deleted so the material always holds a
    complete texture.
    """

    def __init__(self, texture_factory, sampling="nearest", exporter=None):
        self.texture_factory = texture_factory
        self.sampling = sampling
        self.exporter = exporter
        self.last_sequence = None
        self.textures_created = 0
        self.textures_deleted = 0
        self.textures_adopted = 0
        self._current_texture = None
        self._mismatch_reported = False

    @property
    def live_textures(self):
        """Textures allocated through this feedback, counting a replaced initial texture as adopted."""
        return self.textures_adopted + self.textures_created - self.textures_deleted

    def apply(self, frame, material):
        if not isinstance(material, TexturedMaterial):
            if not self._mismatch_reported:
                print(f"Warning: {material!r} has no texture slot, stylized frames will not be applied.")
                self._mismatch_reported = True
            return FeedbackStatus.MATERIAL_MISMATCH

        if frame.sequence is not None and self.last_sequence is not None and frame.sequence <= self.last_sequence:
            print(f"DEBUG: Dropping stale frame {frame.sequence} (last applied {self.last_sequence})")
            return FeedbackStatus.STALE_FRAME

        new_texture = self.texture_factory(frame.pixels, frame.width, frame.height, self.sampling)
        self.textures_created += 1

        previous = material.albedo_texture
        material.albedo_texture = new_texture
        if previous is not None and previous is not new_texture:
            if previous is not self._current_texture:
                self.textures_adopted += 1
            previous.delete()
            self.textures_deleted += 1
        self._current_texture = new_texture

        if frame.sequence is not None:
            self.last_sequence = frame.sequence
        if self.exporter is not None:
            self.exporter.submit(frame)
        return FeedbackStatus.APPLIED


class FrameExporter:
    """Encodes applied frames to data URLs and optionally writes them to disk, off the render path."""

    def __init__(self, export_dir=None, image_format="jpeg"):
        self.export_dir = export_dir
        self.image_format = image_format
        self.latest_data_url = None
        self.exported = 0
        self.failed = 0
        self._pool = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="frame-export")

    def submit(self, frame):
        # Copy so the worker never sees a buffer the loop reuses.
        pixels = frame.pixels.copy()
        sequence = frame.sequence if frame.sequence is not None else self.exported + self.failed
        return self._pool.submit(self._export, pixels, sequence)

    def _export(self, pixels, sequence):
        try:
            self.latest_data_url = encode_data_url(pixels, self.image_format)
        except ValueError as e:
            print(f"Error encoding frame {sequence}: {e}")
            self.failed += 1
            return None
        if self.export_dir:
            path = os.path.join(self.export_dir, frame_filename(sequence, self.image_format))
            if not save_frame(path, pixels, self.image_format):
                self.failed += 1
                return None
        self.exported += 1
        return self.latest_data_url

    def close(self, wait=True):
        self._pool.shutdown(wait=wait)
