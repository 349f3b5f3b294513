import math
from pyglet.math import Mat4, Vec3


class OrbitCamera:
    """Arc-rotate camera circling a target point.

    ``alpha`` is the longitudinal angle around the Y axis, ``beta`` the
    latitudinal angle from +Y, both in radians.
    """

    def __init__(self, alpha=math.pi / 2, beta=math.pi / 2, radius=3.0, target=Vec3(0, 0, 0)):
        self.alpha = alpha
        self.beta = beta
        self.radius = radius
        self.target = target
        self.world_up_vector = Vec3(0, 1, 0)
        self.rotate_sensitivity = 0.01
        self.zoom_speed = 0.25
        self.min_radius = 1.2
        self.max_radius = 20.0

    @property
    def position(self):
        sin_beta = math.sin(self.beta)
        return Vec3(
            self.target.x + self.radius * math.cos(self.alpha) * sin_beta,
            self.target.y + self.radius * math.cos(self.beta),
            self.target.z + self.radius * math.sin(self.alpha) * sin_beta,
        )

    def get_view_matrix(self):
        return Mat4.look_at(self.position, self.target, self.world_up_vector)

    def on_mouse_drag(self, dx, dy):
        self.alpha = (self.alpha + dx * self.rotate_sensitivity) % (2 * math.pi)
        # Stay off the poles, look_at degenerates when forward is parallel to up
        self.beta = max(0.05, min(math.pi - 0.05, self.beta - dy * self.rotate_sensitivity))

    def on_mouse_scroll(self, scroll_y):
        self.radius = max(self.min_radius, min(self.max_radius, self.radius - scroll_y * self.zoom_speed))
