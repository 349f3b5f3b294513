import pyglet
import pyglet.gl as gl
import numpy as np
import math
import traceback
import ctypes
import trimesh
from pyglet.math import Mat4

from . import shaders

_FILTERS = {"nearest": gl.GL_NEAREST, "linear": gl.GL_LINEAR}


def _create_gl_texture(width, height, sampling="linear"):
    gl_filter = _FILTERS.get(sampling, gl.GL_LINEAR)
    tex_id = gl.GLuint()
    gl.glGenTextures(1, tex_id)
    gl.glBindTexture(gl.GL_TEXTURE_2D, tex_id)
    gl.glTexParameteri(gl.GL_TEXTURE_2D, gl.GL_TEXTURE_MIN_FILTER, gl_filter)
    gl.glTexParameteri(gl.GL_TEXTURE_2D, gl.GL_TEXTURE_MAG_FILTER, gl_filter)
    gl.glTexParameteri(gl.GL_TEXTURE_2D, gl.GL_TEXTURE_WRAP_S, gl.GL_CLAMP_TO_EDGE)
    gl.glTexParameteri(gl.GL_TEXTURE_2D, gl.GL_TEXTURE_WRAP_T, gl.GL_CLAMP_TO_EDGE)
    gl.glTexImage2D(gl.GL_TEXTURE_2D, 0, gl.GL_RGB8, width, height, 0, gl.GL_RGB, gl.GL_UNSIGNED_BYTE, None)
    return tex_id


class GLTexture:
    """An OpenGL 2D RGB texture owned by exactly one holder until delete()."""

    def __init__(self, width, height, sampling="linear"):
        self.width = max(1, int(width))
        self.height = max(1, int(height))
        self.sampling = sampling
        self.tex_id = _create_gl_texture(self.width, self.height, sampling)
        gl.glBindTexture(gl.GL_TEXTURE_2D, 0)

    @property
    def deleted(self):
        return self.tex_id is None

    def upload(self, pixels):
        """Uploads top-down RGB uint8 pixels, reallocating if the size changed."""
        data_np = np.ascontiguousarray(np.flipud(pixels[:, :, :3]), dtype=np.uint8)
        h_d, w_d = data_np.shape[:2]
        gl.glBindTexture(gl.GL_TEXTURE_2D, self.tex_id)
        gl.glPixelStorei(gl.GL_UNPACK_ALIGNMENT, 1)
        if w_d != self.width or h_d != self.height:
            gl.glTexImage2D(gl.GL_TEXTURE_2D, 0, gl.GL_RGB8, w_d, h_d, 0, gl.GL_RGB, gl.GL_UNSIGNED_BYTE, data_np.ctypes.data)
            self.width, self.height = w_d, h_d
        else:
            gl.glTexSubImage2D(gl.GL_TEXTURE_2D, 0, 0, 0, w_d, h_d, gl.GL_RGB, gl.GL_UNSIGNED_BYTE, data_np.ctypes.data)
        gl.glBindTexture(gl.GL_TEXTURE_2D, 0)

    def bind(self, unit=0):
        gl.glActiveTexture(gl.GL_TEXTURE0 + unit)
        gl.glBindTexture(gl.GL_TEXTURE_2D, self.tex_id)

    def delete(self):
        if self.tex_id is None:
            return
        gl.glDeleteTextures(1, self.tex_id)
        self.tex_id = None

    def __repr__(self):
        state = "deleted" if self.deleted else f"id={self.tex_id.value}"
        return f"GLTexture({self.width}x{self.height}, {self.sampling}, {state})"


def create_surface_texture(pixels, width, height, sampling="nearest"):
    """Texture factory for TextureFeedback: a new GL texture filled with the pixels."""
    texture = GLTexture(width, height, sampling)
    texture.upload(pixels)
    return texture


class OffscreenTarget:
    """Framebuffer the scene is rendered into; its pixels are what the style cycle captures."""

    def __init__(self, width, height):
        self.width = max(1, int(width))
        self.height = max(1, int(height))
        self.color_texture = GLTexture(self.width, self.height, "linear")
        self.pack_buffer = None
        self._fence = None

        self.fbo = gl.GLuint()
        gl.glGenFramebuffers(1, self.fbo)
        gl.glBindFramebuffer(gl.GL_FRAMEBUFFER, self.fbo)
        gl.glFramebufferTexture2D(gl.GL_FRAMEBUFFER, gl.GL_COLOR_ATTACHMENT0, gl.GL_TEXTURE_2D, self.color_texture.tex_id, 0)

        self.depth_rbo = gl.GLuint()
        gl.glGenRenderbuffers(1, self.depth_rbo)
        gl.glBindRenderbuffer(gl.GL_RENDERBUFFER, self.depth_rbo)
        gl.glRenderbufferStorage(gl.GL_RENDERBUFFER, gl.GL_DEPTH_COMPONENT24, self.width, self.height)
        gl.glFramebufferRenderbuffer(gl.GL_FRAMEBUFFER, gl.GL_DEPTH_ATTACHMENT, gl.GL_RENDERBUFFER, self.depth_rbo)
        gl.glBindRenderbuffer(gl.GL_RENDERBUFFER, 0)

        status = gl.glCheckFramebufferStatus(gl.GL_FRAMEBUFFER)
        if status != gl.GL_FRAMEBUFFER_COMPLETE:
            gl.glBindFramebuffer(gl.GL_FRAMEBUFFER, 0)
            self.delete()
            raise RuntimeError(f"Offscreen framebuffer incomplete (status 0x{status:x})")

        # Defined contents before the first frame is drawn
        gl.glClearColor(0.0, 0.0, 0.0, 1.0)
        gl.glClear(gl.GL_COLOR_BUFFER_BIT | gl.GL_DEPTH_BUFFER_BIT)
        gl.glBindFramebuffer(gl.GL_FRAMEBUFFER, 0)
        print(f"DEBUG: Offscreen render target created ({self.width}x{self.height}).")

    def bind(self):
        gl.glBindFramebuffer(gl.GL_FRAMEBUFFER, self.fbo)
        gl.glViewport(0, 0, self.width, self.height)

    def unbind(self, viewport_width, viewport_height):
        gl.glBindFramebuffer(gl.GL_FRAMEBUFFER, 0)
        gl.glViewport(0, 0, viewport_width, viewport_height)

    def begin_read(self):
        """Queues a copy of the target into the pixel pack buffer and fences it. Does not wait."""
        if self._fence is not None:
            raise RuntimeError("A readback is already pending on this target")
        size = self.width * self.height * 3
        if self.pack_buffer is None:
            self.pack_buffer = gl.GLuint()
            gl.glGenBuffers(1, self.pack_buffer)
            gl.glBindBuffer(gl.GL_PIXEL_PACK_BUFFER, self.pack_buffer)
            gl.glBufferData(gl.GL_PIXEL_PACK_BUFFER, size, None, gl.GL_STREAM_READ)
        gl.glBindFramebuffer(gl.GL_READ_FRAMEBUFFER, self.fbo)
        gl.glBindBuffer(gl.GL_PIXEL_PACK_BUFFER, self.pack_buffer)
        try:
            gl.glPixelStorei(gl.GL_PACK_ALIGNMENT, 1)
            # With a pack buffer bound the last argument is an offset into it
            gl.glReadPixels(0, 0, self.width, self.height, gl.GL_RGB, gl.GL_UNSIGNED_BYTE, None)
            error = gl.glGetError()
            if error != gl.GL_NO_ERROR:
                raise RuntimeError(f"glReadPixels failed with GL error 0x{error:x}")
            self._fence = gl.glFenceSync(gl.GL_SYNC_GPU_COMMANDS_COMPLETE, 0)
            gl.glFlush()
        finally:
            gl.glBindBuffer(gl.GL_PIXEL_PACK_BUFFER, 0)
            gl.glBindFramebuffer(gl.GL_READ_FRAMEBUFFER, 0)

    def read_ready(self):
        if self._fence is None:
            raise RuntimeError("No readback pending on this target")
        status = gl.glClientWaitSync(self._fence, 0, 0)
        if status == gl.GL_WAIT_FAILED:
            raise RuntimeError("glClientWaitSync failed")
        return status in (gl.GL_ALREADY_SIGNALED, gl.GL_CONDITION_SATISFIED)

    def finish_read(self, timeout=1.0):
        """Waits for the pending copy and returns the target as top-down RGB uint8 [H, W, 3]."""
        if self._fence is None:
            raise RuntimeError("No readback pending on this target")
        status = gl.glClientWaitSync(self._fence, gl.GL_SYNC_FLUSH_COMMANDS_BIT, int(timeout * 1e9))
        self._delete_fence()
        if status not in (gl.GL_ALREADY_SIGNALED, gl.GL_CONDITION_SATISFIED):
            raise RuntimeError(f"Readback did not complete within {timeout}s (sync status 0x{status:x})")

        size = self.width * self.height * 3
        buffer = np.empty((self.height, self.width, 3), dtype=np.uint8)
        gl.glBindBuffer(gl.GL_PIXEL_PACK_BUFFER, self.pack_buffer)
        try:
            mapped = gl.glMapBufferRange(gl.GL_PIXEL_PACK_BUFFER, 0, size, gl.GL_MAP_READ_BIT)
            if not mapped:
                raise RuntimeError(f"glMapBufferRange failed with GL error 0x{gl.glGetError():x}")
            ctypes.memmove(buffer.ctypes.data, mapped, size)
            gl.glUnmapBuffer(gl.GL_PIXEL_PACK_BUFFER)
        finally:
            gl.glBindBuffer(gl.GL_PIXEL_PACK_BUFFER, 0)
        return np.ascontiguousarray(np.flipud(buffer))

    def cancel_read(self):
        self._delete_fence()

    def _delete_fence(self):
        if self._fence is not None:
            gl.glDeleteSync(self._fence)
            self._fence = None

    def delete(self):
        self._delete_fence()
        if self.pack_buffer:
            gl.glDeleteBuffers(1, self.pack_buffer); self.pack_buffer = None
        if self.fbo:
            gl.glDeleteFramebuffers(1, self.fbo); self.fbo = None
        if self.depth_rbo:
            gl.glDeleteRenderbuffers(1, self.depth_rbo); self.depth_rbo = None
        if self.color_texture:
            self.color_texture.delete(); self.color_texture = None

    def __repr__(self):
        return f"OffscreenTarget({self.width}x{self.height})"


def build_sphere_mesh(radius=1.0, rings=16, segments=32):
    """UV sphere as flat (positions, normals, tex_coords, indices) lists for a vertex list."""
    sphere = trimesh.creation.uv_sphere(radius=radius, count=[rings, segments])
    positions = np.asarray(sphere.vertices, dtype=np.float32)
    normals = np.asarray(sphere.vertex_normals, dtype=np.float32)
    directions = positions / np.maximum(np.linalg.norm(positions, axis=1, keepdims=True), 1e-8)
    u = 0.5 + np.arctan2(directions[:, 2], directions[:, 0]) / (2.0 * math.pi)
    v = 0.5 + np.arcsin(np.clip(directions[:, 1], -1.0, 1.0)) / math.pi
    tex_coords = np.stack([u, v], axis=1).astype(np.float32)
    indices = np.asarray(sphere.faces, dtype=np.uint32)
    return positions.ravel().tolist(), normals.ravel().tolist(), tex_coords.ravel().tolist(), indices.ravel().tolist()


class Renderer:
    def __init__(self, window_width, window_height):
        self.width = window_width
        self.height = window_height
        self._aspect_ratio = float(self.width) / self.height if self.height > 0 else 1.0
        self.light_direction = (0.4, 0.8, 0.6)

        self.mesh_shader_program = None
        self.texture_shader_program = None
        self.mesh_vertex_list = None
        self.texture_quad_vao = None
        self.texture_quad_vbo = None

        self._setup_shaders()
        self._setup_texture_quad()

    def _setup_shaders(self):
        # Compile failures are fatal, the caller cannot render anything without these programs
        vert_shader = pyglet.graphics.shader.Shader(shaders.MESH_VERTEX_SHADER_SOURCE, 'vertex')
        frag_shader = pyglet.graphics.shader.Shader(shaders.MESH_FRAGMENT_SHADER_SOURCE, 'fragment')
        self.mesh_shader_program = pyglet.graphics.shader.ShaderProgram(vert_shader, frag_shader)
        print("DEBUG: Mesh shader program created in Renderer.")

        texture_vert_shader = pyglet.graphics.shader.Shader(shaders.TEXTURE_VERTEX_SHADER_SOURCE, 'vertex')
        texture_frag_shader = pyglet.graphics.shader.Shader(shaders.TEXTURE_FRAGMENT_SHADER_SOURCE, 'fragment')
        self.texture_shader_program = pyglet.graphics.shader.ShaderProgram(texture_vert_shader, texture_frag_shader)
        print("DEBUG: Texture quad shader program created in Renderer.")

    def _setup_texture_quad(self):
        quad_vertices = [
            -1, -1,  0, 0,  # pos    # tex
             1, -1,  1, 0,
            -1,  1,  0, 1,
             1,  1,  1, 1,
        ]
        quad_vertices_gl = (gl.GLfloat * len(quad_vertices))(*quad_vertices)

        self.texture_quad_vbo = gl.GLuint()
        gl.glGenBuffers(1, self.texture_quad_vbo)
        gl.glBindBuffer(gl.GL_ARRAY_BUFFER, self.texture_quad_vbo)
        gl.glBufferData(gl.GL_ARRAY_BUFFER, len(quad_vertices) * 4, quad_vertices_gl, gl.GL_STATIC_DRAW)

        self.texture_quad_vao = gl.GLuint()
        gl.glGenVertexArrays(1, self.texture_quad_vao)
        gl.glBindVertexArray(self.texture_quad_vao)
        gl.glBindBuffer(gl.GL_ARRAY_BUFFER, self.texture_quad_vbo)

        pos_attrib_location = self.texture_shader_program.attributes['position']['location']
        tex_coord_attrib_location = self.texture_shader_program.attributes['texCoord_in']['location']

        gl.glEnableVertexAttribArray(pos_attrib_location)
        gl.glVertexAttribPointer(pos_attrib_location, 2, gl.GL_FLOAT, gl.GL_FALSE, 4 * 4, ctypes.c_void_p(0))
        gl.glEnableVertexAttribArray(tex_coord_attrib_location)
        gl.glVertexAttribPointer(tex_coord_attrib_location, 2, gl.GL_FLOAT, gl.GL_FALSE, 4 * 4, ctypes.c_void_p(2 * 4))

        gl.glBindVertexArray(0)
        gl.glBindBuffer(gl.GL_ARRAY_BUFFER, 0)
        print("DEBUG: Texture quad VAO/VBO created in Renderer.")

    def set_mesh(self, positions, normals, tex_coords, indices):
        if self.mesh_vertex_list:
            self.mesh_vertex_list.delete(); self.mesh_vertex_list = None
        self.mesh_vertex_list = self.mesh_shader_program.vertex_list_indexed(
            len(positions) // 3,
            gl.GL_TRIANGLES,
            indices,
            position=('f', positions),
            normal=('f', normals),
            tex_coords=('f', tex_coords),
        )

    def render_scene(self, projection_matrix, view_matrix, material):
        if not self.mesh_shader_program or not self.mesh_vertex_list:
            return
        texture = getattr(material, "albedo_texture", None)
        color = getattr(material, "albedo_color", None) or getattr(material, "color", (1.0, 1.0, 1.0))

        self.mesh_shader_program.use()
        try:
            gl.glEnable(gl.GL_DEPTH_TEST)
            gl.glDisable(gl.GL_BLEND)
            self.mesh_shader_program['projection'] = projection_matrix
            self.mesh_shader_program['view'] = view_matrix
            self.mesh_shader_program['model'] = Mat4()
            self.mesh_shader_program['albedoColor'] = tuple(color)
            self.mesh_shader_program['lightDirection'] = self.light_direction
            use_texture = texture is not None and not texture.deleted
            self.mesh_shader_program['useTexture'] = use_texture
            if use_texture:
                texture.bind(0)
                self.mesh_shader_program['albedoTexture'] = 0
            self.mesh_vertex_list.draw(gl.GL_TRIANGLES)
        except Exception as e_render:
            print(f"ERROR during render_scene in Renderer: {e_render}")
            traceback.print_exc()
        finally:
            gl.glBindTexture(gl.GL_TEXTURE_2D, 0)
            self.mesh_shader_program.stop()

    def render_texture_fullscreen(self, texture):
        if not self.texture_shader_program or not self.texture_quad_vao or texture is None or texture.deleted:
            return
        try:
            gl.glDisable(gl.GL_DEPTH_TEST)
            gl.glDisable(gl.GL_BLEND)
            self.texture_shader_program.use()
            texture.bind(0)
            self.texture_shader_program['fboTexture'] = 0
            gl.glBindVertexArray(self.texture_quad_vao)
            gl.glDrawArrays(gl.GL_TRIANGLE_STRIP, 0, 4)
        except Exception as e_render_quad:
            print(f"Error rendering texture quad in Renderer: {e_render_quad}")
            traceback.print_exc()
        finally:
            gl.glBindVertexArray(0)
            gl.glBindTexture(gl.GL_TEXTURE_2D, 0)
            if self.texture_shader_program: self.texture_shader_program.stop()
            gl.glEnable(gl.GL_DEPTH_TEST)

    def on_resize(self, width, height):
        self.width = max(1, width)
        self.height = max(1, height)
        self._aspect_ratio = float(self.width) / self.height if self.height > 0 else 1.0

    def cleanup(self):
        print("Cleaning up Renderer resources...")
        if self.mesh_vertex_list: self.mesh_vertex_list.delete(); self.mesh_vertex_list = None
        if self.mesh_shader_program: self.mesh_shader_program.delete(); self.mesh_shader_program = None
        if self.texture_shader_program: self.texture_shader_program.delete(); self.texture_shader_program = None
        if self.texture_quad_vao: gl.glDeleteVertexArrays(1, self.texture_quad_vao); self.texture_quad_vao = None
        if self.texture_quad_vbo: gl.glDeleteBuffers(1, self.texture_quad_vbo); self.texture_quad_vbo = None
        print("Renderer cleanup complete.")
