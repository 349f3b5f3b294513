from dataclasses import dataclass
from typing import Optional

from .capture import FrameCapture
from .config import cycle_config_from_settings
from .controller import CycleController
from .feedback import FrameExporter, TextureFeedback
from .file_io import load_image
from .inference_logic import InferenceSession
from .materials import TexturedMaterial
from .scene import SceneContext


@dataclass
class StyleLoop:
    """The assembled feedback loop: controller, the surface material it writes and the optional exporter."""
    controller: CycleController
    material: TexturedMaterial
    exporter: Optional[FrameExporter] = None

    @property
    def session(self):
        return self.controller.session

    def release(self):
        """Frees the exporter worker, the models and the current surface texture."""
        if self.exporter:
            self.exporter.close(); self.exporter = None
        self.session.release()
        if self.material.albedo_texture is not None:
            self.material.albedo_texture.delete()
            self.material.albedo_texture = None


def build_style_loop(settings, scheduler, render_target, texture_factory, camera=None, mesh=None):
    """Loads the surface image and both models and returns an initialized StyleLoop.

    ``texture_factory(pixels, width, height, sampling)`` creates the surface
    textures. If any asset fails to load, everything created here is released
    again before the AssetLoadError propagates.
    """
    cycle_config = cycle_config_from_settings(settings)
    surface_pixels = load_image(settings["surface_image"])
    surface_h, surface_w = surface_pixels.shape[:2]
    material = TexturedMaterial(
        "surface", albedo_texture=texture_factory(surface_pixels, surface_w, surface_h, "linear"))

    exporter = None
    session = None
    try:
        if settings["export_enabled"]:
            exporter = FrameExporter(settings["export_dir"], settings["export_format"])
        session = InferenceSession(settings["encoder_model"], settings["transform_model"],
                                   device=settings["device"], model_layout=settings["model_layout"])
        controller = CycleController(
            session,
            FrameCapture(scheduler, cycle_config.capture_policy),
            TextureFeedback(texture_factory, sampling=settings["texture_sampling"], exporter=exporter),
            SceneContext(render_target=render_target, material=material, camera=camera, mesh=mesh),
            config=cycle_config,
        )
        controller.initialize(settings["style_image"])
    except Exception:
        if exporter is not None:
            exporter.close()
        if session is not None:
            session.release()
        material.albedo_texture.delete()
        material.albedo_texture = None
        raise
    return StyleLoop(controller, material, exporter)
