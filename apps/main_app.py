#!/usr/bin/env python3
"""
Main entry point for the Style Loop viewer.

Opens a window rendering a textured sphere, then repeatedly captures the
rendered frame, stylizes it with the configured style encoder / transform
network pair and feeds the result back as the sphere's texture.
"""

import os
import sys
import argparse
import traceback
import pyglet

# Add src directory to Python path for package imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src'))

from styleloop_viewer.config import load_settings_from_file
from styleloop_viewer.errors import AssetLoadError
from styleloop_viewer.main_viewer import StyleLoopWindow

# Settings keys that can be overridden from the command line
_OVERRIDE_KEYS = (
    "capture_policy", "trigger_policy", "trigger_delay", "encoder_model", "transform_model",
    "style_image", "surface_image", "device", "model_layout", "export_dir",
)


def build_parser():
    parser = argparse.ArgumentParser(description="Render -> stylize -> re-texture feedback loop viewer.")
    parser.add_argument("--settings", type=str, default="styleloop_settings.json", help="Settings JSON file.")
    parser.add_argument("--capture-policy", choices=["paused", "live"], help="Suspend rendering around readback or not.")
    parser.add_argument("--trigger-policy", choices=["continuous", "delayed", "manual"], help="When cycles start.")
    parser.add_argument("--trigger-delay", type=float, help="Seconds before the delayed one-shot trigger.")
    parser.add_argument("--encoder-model", type=str, help="Style encoder TorchScript path or URL.")
    parser.add_argument("--transform-model", type=str, help="Transform network TorchScript path or URL.")
    parser.add_argument("--style-image", type=str, help="Style reference image path or URL.")
    parser.add_argument("--surface-image", type=str, help="Initial surface texture path or URL.")
    parser.add_argument("--device", type=str, help="Torch device, e.g. 'cpu', 'cuda' or 'auto'.")
    parser.add_argument("--model-layout", choices=["nhwc", "nchw"], help="Image layout the models consume.")
    parser.add_argument("--export-dir", type=str, help="Write every applied frame to this directory.")
    parser.add_argument("--width", type=int, default=800)
    parser.add_argument("--height", type=int, default=500)
    return parser


def resolve_settings(args):
    settings = load_settings_from_file(args.settings)
    for settings_key in _OVERRIDE_KEYS:
        value = getattr(args, settings_key)
        if value is not None:
            settings[settings_key] = value
    if args.export_dir:
        settings["export_enabled"] = True
    return settings


def main(argv=None):
    args = build_parser().parse_args(argv)
    settings = resolve_settings(args)

    config = pyglet.gl.Config(sample_buffers=1, samples=4, depth_size=24, double_buffer=True)
    window_kwargs = dict(width=args.width, height=args.height, caption='Style Loop Viewer', resizable=True)
    try:
        try:
            window = StyleLoopWindow(settings, args.settings, config=config, **window_kwargs)
        except pyglet.window.NoSuchConfigException:
            print("Warning: Desired GL config not available. Falling back to default.")
            window = StyleLoopWindow(settings, args.settings, **window_kwargs)
    except AssetLoadError as e:
        print(f"Error: could not start the style loop: {e}")
        return 1

    try:
        pyglet.app.run()
    except Exception as e_run:
        print(f"Unhandled exception during pyglet.app.run(): {e_run}")
        traceback.print_exc()
        return 1
    finally:
        print("Application run loop finished or exited via exception.")
        if window.controller:
            print(f"Completed cycles: {window.controller.completed_cycles}, faults: {window.controller.faults}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
