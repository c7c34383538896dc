from __future__ import annotations

from dataclasses import replace

from .settings import TransformOptions


PRESETS: dict[str, dict] = {
    # What the upload hook applies to every new file.
    "upload": {"target_format": "webp", "quality": 80, "max_width": None, "max_height": None, "recursive": False},
    # Admin "optimize all" button.
    "batch": {"target_format": "webp", "quality": 80, "recursive": True},
    # The old standalone maintenance job ran a little harder.
    "script": {"target_format": "webp", "quality": 75, "recursive": True},
    "thumbnail": {"target_format": "webp", "quality": 75, "max_width": 800, "max_height": 800},
    "archive": {"target_format": "jpeg", "quality": 85},
}


def apply_preset(name: str, base: TransformOptions | None = None) -> TransformOptions:
    name = name.lower()
    base = base or TransformOptions()

    try:
        overrides = PRESETS[name]
    except KeyError:
        raise ValueError(f"Unknown preset: {name}") from None

    return replace(base, **overrides)
