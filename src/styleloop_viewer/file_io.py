import os
import base64
import traceback
from urllib.parse import urlparse

import cv2
import numpy as np
import torch

from .errors import AssetLoadError

_MIME_TYPES = {"jpeg": "image/jpeg", "png": "image/png"}
_EXTENSIONS = {"jpeg": ".jpg", "png": ".png"}


def is_url(location):
    return urlparse(str(location)).scheme in ("http", "https")


def resolve_asset(location, cache_dir=None):
    """Returns a local path for an asset path or URL, downloading URLs into the torch hub cache."""
    location = str(location)
    if not is_url(location):
        if not os.path.exists(location):
            raise AssetLoadError(f"Asset not found: {location}")
        return location

    cache_dir = cache_dir or os.path.join(torch.hub.get_dir(), "styleloop")
    filename = os.path.basename(urlparse(location).path) or "asset"
    local_path = os.path.join(cache_dir, filename)
    if os.path.exists(local_path):
        return local_path
    try:
        os.makedirs(cache_dir, exist_ok=True)
        print(f"DEBUG: Downloading {location} -> {local_path}")
        torch.hub.download_url_to_file(location, local_path, progress=False)
    except Exception as e:
        raise AssetLoadError(f"Failed to fetch {location}: {e}") from e
    return local_path


def load_image(location):
    """Loads an image path or URL into an RGB uint8 array of shape [H, W, 3]."""
    path = resolve_asset(location)
    image = cv2.imread(path, cv2.IMREAD_COLOR)
    if image is None:
        raise AssetLoadError(f"Could not decode image: {location}")
    return np.ascontiguousarray(cv2.cvtColor(image, cv2.COLOR_BGR2RGB))


def load_model(location, device):
    """Loads a TorchScript model package onto the given device in eval mode."""
    path = resolve_asset(location)
    try:
        model = torch.jit.load(path, map_location=device)
    except (RuntimeError, ValueError, OSError) as e:
        raise AssetLoadError(f"Could not load model package {location}: {e}") from e
    model.eval()
    return model


def encode_image(pixels, image_format="jpeg"):
    """Encodes RGB pixels to compressed image bytes."""
    if image_format not in _EXTENSIONS:
        raise ValueError(f"Unsupported export format: {image_format}")
    bgr = cv2.cvtColor(np.ascontiguousarray(pixels), cv2.COLOR_RGB2BGR)
    ok, buffer = cv2.imencode(_EXTENSIONS[image_format], bgr)
    if not ok:
        raise ValueError(f"OpenCV could not encode a {pixels.shape} frame as {image_format}")
    return buffer.tobytes()


def encode_data_url(pixels, image_format="jpeg"):
    """Encodes RGB pixels as a base64 data URL, e.g. 'data:image/jpeg;base64,...'."""
    payload = base64.b64encode(encode_image(pixels, image_format)).decode("ascii")
    return f"data:{_MIME_TYPES[image_format]};base64,{payload}"


def save_frame(filepath, pixels, image_format="jpeg"):
    """Writes RGB pixels to disk. Returns True on success."""
    try:
        os.makedirs(os.path.dirname(filepath) or ".", exist_ok=True)
        with open(filepath, "wb") as f:
            f.write(encode_image(pixels, image_format))
        return True
    except (OSError, ValueError) as e:
        print(f"Error saving frame {filepath}: {e}")
        traceback.print_exc()
        return False


def frame_filename(sequence, image_format="jpeg"):
    return f"stylized_{int(sequence):06d}{_EXTENSIONS[image_format]}"
