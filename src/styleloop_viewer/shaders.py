# GLSL Shader source strings

MESH_VERTEX_SHADER_SOURCE = '''#version 150 core
    in vec3 position;
    in vec3 normal;
    in vec2 tex_coords;

    out vec3 frag_normal;
    out vec2 frag_uv;

    uniform mat4 projection;
    uniform mat4 view;
    uniform mat4 model;

    void main() {
        gl_Position = projection * view * model * vec4(position, 1.0);
        frag_normal = mat3(model) * normal;
        frag_uv = tex_coords;
    }
'''

MESH_FRAGMENT_SHADER_SOURCE = '''#version 150 core
    in vec3 frag_normal;
    in vec2 frag_uv;
    out vec4 final_color;

    uniform sampler2D albedoTexture;
    uniform bool useTexture;        // False for materials without a texture slot
    uniform vec3 albedoColor;
    uniform vec3 lightDirection;

    void main() {
        vec3 base = albedoColor;
        if (useTexture) {
            base *= texture(albedoTexture, frag_uv).rgb;
        }
        float diffuse = max(dot(normalize(frag_normal), normalize(lightDirection)), 0.0);
        final_color = vec4(base * (0.35 + 0.65 * diffuse), 1.0);
    }
'''

# Fullscreen quad used to blit the offscreen render target to the window
TEXTURE_VERTEX_SHADER_SOURCE = '''#version 150 core
    in vec2 position;
    in vec2 texCoord_in;
    out vec2 texCoord;

    void main() {
        gl_Position = vec4(position, 0.0, 1.0);
        texCoord = texCoord_in;
    }
'''

TEXTURE_FRAGMENT_SHADER_SOURCE = '''#version 150 core
    in vec2 texCoord;
    out vec4 final_color;
    uniform sampler2D fboTexture;
    void main() {
        final_color = texture(fboTexture, texCoord);
    }
'''
