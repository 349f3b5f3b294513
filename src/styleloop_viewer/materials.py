class Material:
    def __init__(self, name):
        self.name = name

    def __repr__(self):
        return f"{type(self).__name__}({self.name!r})"


class TexturedMaterial(Material):
    """Material sampling its albedo from a texture. The only material the feedback loop writes to."""

    def __init__(self, name, albedo_texture=None, albedo_color=(1.0, 1.0, 1.0)):
        super().__init__(name)
        self.albedo_texture = albedo_texture
        self.albedo_color = albedo_color


class SolidMaterial(Material):
    """Flat-coloured material without a texture slot."""

    def __init__(self, name, color=(1.0, 0.766, 0.336)):
        super().__init__(name)
        self.color = color
