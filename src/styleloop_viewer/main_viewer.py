import pyglet
import pyglet.gl as gl
import traceback
from pyglet.math import Mat4
from pyglet.window import key

from .camera_handler import OrbitCamera
from .config import save_settings_to_file
from .rendering import OffscreenTarget, Renderer, build_sphere_mesh, create_surface_texture
from .scheduler import FrameScheduler
from .style_loop import build_style_loop


class StyleLoopWindow(pyglet.window.Window):
    """Renders a textured sphere and keeps re-texturing it with stylized captures of itself.

    Raises AssetLoadError from the constructor when the models, the style image
    or the surface image cannot be loaded. The GL resources created so far are
    released and the window is closed before the error propagates.
    """

    def __init__(self, settings, settings_path="styleloop_settings.json", *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.settings = dict(settings)
        self.settings_path = settings_path
        self.scheduler = FrameScheduler()
        self.camera = OrbitCamera()
        self.renderer = None
        self.render_target = None
        self.loop = None
        self.controller = None

        try:
            self.renderer = Renderer(self.width, self.height)
            self.renderer.set_mesh(*build_sphere_mesh())
            self.render_target = OffscreenTarget(self.settings["render_width"], self.settings["render_height"])
            self.loop = build_style_loop(self.settings, self.scheduler, self.render_target, create_surface_texture,
                                         camera=self.camera, mesh=self.renderer.mesh_vertex_list)
        except Exception:
            self._release_resources()
            self.close()
            raise
        self.material = self.loop.material
        self.controller = self.loop.controller
        self.cycle_config = self.controller.config

        print(f"DEBUG: Style loop ready - capture={self.cycle_config.capture_policy.value}, "
              f"trigger={self.cycle_config.trigger_policy.value}")
        self.controller.attach(self.scheduler)
        self._initialize_text_overlays()
        pyglet.clock.schedule(self.update)

    def _initialize_text_overlays(self):
        self.overlay_batch = pyglet.graphics.Batch()
        label_color = (200, 200, 200, 200)
        y_pos = self.height - 20
        self.state_label = pyglet.text.Label("", x=10, y=y_pos, anchor_x='left', anchor_y='top', batch=self.overlay_batch, color=label_color)
        y_pos -= 20
        self.cycles_label = pyglet.text.Label("", x=10, y=y_pos, anchor_x='left', anchor_y='top', batch=self.overlay_batch, color=label_color)
        y_pos -= 20
        self.faults_label = pyglet.text.Label("", x=10, y=y_pos, anchor_x='left', anchor_y='top', batch=self.overlay_batch, color=label_color)

    def _update_overlay_labels(self):
        controller = self.controller
        self.state_label.text = f"State: {controller.state.value}"
        last = f"{controller.last_cycle_seconds * 1000:.0f} ms" if controller.last_cycle_seconds else "-"
        self.cycles_label.text = f"Cycles: {controller.completed_cycles} (last {last}), dropped triggers: {controller.dropped_triggers}"
        error = f" - {controller.last_error}" if controller.last_error else ""
        self.faults_label.text = f"Faults: {controller.faults}{error}"

    def update(self, dt):
        if self.settings["show_status_overlay"]:
            self._update_overlay_labels()

    def get_projection_and_view_matrices(self, width, height):
        view_matrix = self.camera.get_view_matrix()
        aspect = width / height if height > 0 else 1.0
        projection_matrix = Mat4.perspective_projection(aspect, z_near=0.01, z_far=100.0, fov=60.0)
        return projection_matrix, view_matrix

    def on_draw(self):
        # The offscreen target only advances when the scheduler allows a new frame
        if self.scheduler.begin_frame():
            self.render_target.bind()
            gl.glClearColor(0.05, 0.05, 0.08, 1.0)
            gl.glClear(gl.GL_COLOR_BUFFER_BIT | gl.GL_DEPTH_BUFFER_BIT)
            projection_matrix, view_matrix = self.get_projection_and_view_matrices(
                self.render_target.width, self.render_target.height)
            self.renderer.render_scene(projection_matrix, view_matrix, self.material)
            self.render_target.unbind(*self.get_framebuffer_size())

        gl.glClearColor(0.0, 0.0, 0.0, 1.0)
        self.clear()
        self.renderer.render_texture_fullscreen(self.render_target.color_texture)
        if self.settings["show_status_overlay"]:
            self._render_text_overlays()

    def _render_text_overlays(self):
        gl.glDisable(gl.GL_DEPTH_TEST)
        gl.glEnable(gl.GL_BLEND)
        gl.glBlendFunc(gl.GL_SRC_ALPHA, gl.GL_ONE_MINUS_SRC_ALPHA)
        self.overlay_batch.draw()
        gl.glEnable(gl.GL_DEPTH_TEST)

    def on_resize(self, width, height):
        super().on_resize(width, height)
        self.renderer.on_resize(width, height)
        if hasattr(self, 'state_label'):
            y_pos = height - 20
            for label in (self.state_label, self.cycles_label, self.faults_label):
                label.y = y_pos
                y_pos -= 20

    def on_mouse_drag(self, x, y, dx, dy, buttons, modifiers):
        if buttons & pyglet.window.mouse.LEFT:
            self.camera.on_mouse_drag(dx, dy)

    def on_mouse_scroll(self, x, y, scroll_x, scroll_y):
        self.camera.on_mouse_scroll(scroll_y)

    def on_key_press(self, symbol, modifiers):
        if symbol == key.SPACE:
            if not self.controller.trigger():
                print(f"DEBUG: Trigger ignored, controller is {self.controller.state.value}.")
            return pyglet.event.EVENT_HANDLED
        if symbol == key.S:
            save_settings_to_file(self.settings, self.settings_path)
            return pyglet.event.EVENT_HANDLED
        return super().on_key_press(symbol, modifiers)

    def _release_resources(self):
        if self.loop:
            self.loop.release(); self.loop = None
        if self.render_target:
            self.render_target.delete(); self.render_target = None
        if self.renderer:
            self.renderer.cleanup(); self.renderer = None

    def on_close(self):
        print("Window closing, finishing the in-flight style cycle...")
        pyglet.clock.unschedule(self.update)
        try:
            if self.controller:
                self.controller.detach()
        except Exception as e:
            print(f"Error stopping the style cycle: {e}")
            traceback.print_exc()
        self._release_resources()
        super().on_close()
        print("Window cleanup complete.")
