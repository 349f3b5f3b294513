import json
import os
import enum
from dataclasses import dataclass

# Default settings dictionary
DEFAULT_SETTINGS = {
    "capture_policy": "paused", # "paused" or "live"
    "trigger_policy": "continuous", # "continuous", "delayed" or "manual"
    "trigger_delay": 3.0, # Seconds before the one-shot trigger (delayed policy)
    "encoder_model": "model/style_encoder.pt", # TorchScript package, path or URL
    "transform_model": "model/style_transform.pt", # TorchScript package, path or URL
    "style_image": "style-img/seaport.jpg",
    "surface_image": "style-img/chicago.jpg",
    "device": "auto", # "auto", "cpu", "cuda", "cuda:1", ...
    "model_layout": "nhwc", # "nhwc" or "nchw"
    "render_width": 1024,
    "render_height": 1024,
    "texture_sampling": "nearest", # "nearest" or "linear"
    "export_enabled": False,
    "export_dir": "stylized_output",
    "export_format": "jpeg", # "jpeg" or "png"
    "show_status_overlay": True,
}


class CapturePolicy(enum.Enum):
    PAUSED = "paused"
    LIVE = "live"


class TriggerPolicy(enum.Enum):
    CONTINUOUS = "continuous"
    DELAYED = "delayed"
    MANUAL = "manual"


@dataclass(frozen=True)
class CycleConfig:
    capture_policy: CapturePolicy = CapturePolicy.PAUSED
    trigger_policy: TriggerPolicy = TriggerPolicy.CONTINUOUS
    trigger_delay: float = 3.0

    def __post_init__(self):
        if self.trigger_delay < 0:
            raise ValueError(f"trigger_delay must be >= 0, got {self.trigger_delay}")


def cycle_config_from_settings(settings):
    """Builds the controller configuration from a settings dict. Unknown policies raise ValueError."""
    try:
        capture_policy = CapturePolicy(settings.get("capture_policy", DEFAULT_SETTINGS["capture_policy"]))
    except ValueError:
        raise ValueError(f"Unknown capture policy: {settings.get('capture_policy')!r}") from None
    try:
        trigger_policy = TriggerPolicy(settings.get("trigger_policy", DEFAULT_SETTINGS["trigger_policy"]))
    except ValueError:
        raise ValueError(f"Unknown trigger policy: {settings.get('trigger_policy')!r}") from None
    return CycleConfig(
        capture_policy=capture_policy,
        trigger_policy=trigger_policy,
        trigger_delay=float(settings.get("trigger_delay", DEFAULT_SETTINGS["trigger_delay"])),
    )


def load_settings_from_file(filename="styleloop_settings.json"):
    """Loads settings from a JSON file merged over the defaults."""
    loaded_settings = {}
    try:
        if os.path.exists(filename):
            with open(filename, 'r') as f:
                loaded_settings = json.load(f)
            print(f"DEBUG: Settings loaded from {filename}")
        else:
            print(f"DEBUG: Settings file {filename} not found, using defaults.")
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error loading settings: {e}. Using defaults.")
        loaded_settings = {}

    settings = {}
    for key, default_val in DEFAULT_SETTINGS.items():
        loaded_val = loaded_settings.get(key, default_val)
        try:
            if isinstance(default_val, bool): settings[key] = bool(loaded_val)
            elif isinstance(default_val, int): settings[key] = int(loaded_val)
            elif isinstance(default_val, float): settings[key] = float(loaded_val)
            else: settings[key] = loaded_val
        except (ValueError, TypeError):
            print(f"Warning: Could not convert loaded setting '{key}' ({loaded_val}), using default.")
            settings[key] = default_val
    return settings


def save_settings_to_file(settings, filename="styleloop_settings.json"):
    """Saves the known settings keys to a JSON file. Returns True on success."""
    settings_to_save = {key: settings.get(key, DEFAULT_SETTINGS[key]) for key in DEFAULT_SETTINGS}
    try:
        with open(filename, 'w') as f:
            json.dump(settings_to_save, f, indent=4)
        print(f"DEBUG: Settings saved to {filename}")
        return True
    except OSError as e:
        print(f"Error saving settings: {e}")
        return False


def reset_settings():
    print("DEBUG: Resetting settings to default.")
    return dict(DEFAULT_SETTINGS)
