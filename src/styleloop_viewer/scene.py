from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class SceneContext:
    """Everything the style cycle touches in the scene, passed in explicitly.

    ``render_target`` is read by the capture stage, ``material`` is the only
    object whose texture slot the feedback stage writes.
    """
    render_target: Any
    material: Any
    camera: Optional[Any] = None
    mesh: Optional[Any] = None
