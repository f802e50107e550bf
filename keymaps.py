"""
CHIP-8 keymaps
==============
Maps host keyboard keys onto the 16-key hex keypad.  The default layout
puts the 4×4 pad on the left of a QWERTY keyboard:

    1 2 3 C        1 2 3 4
    4 5 6 D   <-   Q W E R
    7 8 9 E        A S D F
    A 0 B F        Z X C V

A keymap file is a JSON list of entries:

    [{"name": "up", "key": 5, "comments": "arrow keys for movement"}, ...]

``name`` is a pygame key name (as accepted by ``pygame.key.key_code``) and
``key`` the keypad index 0-15.  Entries in a file replace the default
binding for that keypad index.
"""

from __future__ import annotations
import json
from pathlib import Path

NUM_KEYS = 16

DEFAULT_KEYMAP: dict[str, int] = {
    "1": 0x1, "2": 0x2, "3": 0x3, "4": 0xC,
    "q": 0x4, "w": 0x5, "e": 0x6, "r": 0xD,
    "a": 0x7, "s": 0x8, "d": 0x9, "f": 0xE,
    "z": 0xA, "x": 0x0, "c": 0xB, "v": 0xF,
}


class KeymapError(ValueError):
    pass


def parse_keymap(entries) -> dict[str, int]:
    """Validate a decoded JSON keymap. Returns {key name: keypad index}."""
    if not isinstance(entries, list):
        raise KeymapError("Keymap must be a JSON list of entries")
    mapping: dict[str, int] = {}
    for n, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise KeymapError(f"Entry {n}: expected an object, got {type(entry).__name__}")
        name = entry.get("name")
        key = entry.get("key")
        if not isinstance(name, str) or not name:
            raise KeymapError(f"Entry {n}: 'name' must be a non-empty string")
        if isinstance(key, bool) or not isinstance(key, int) or not 0 <= key < NUM_KEYS:
            raise KeymapError(f"Entry {n}: 'key' must be an integer 0-15")
        mapping[name.lower()] = key
    return mapping


def merge_keymap(overrides: dict[str, int],
                 base: dict[str, int] = DEFAULT_KEYMAP) -> dict[str, int]:
    """Apply overrides on top of `base`, dropping base bindings they replace."""
    replaced = set(overrides.values())
    merged = {name: key for name, key in base.items() if key not in replaced}
    merged.update(overrides)
    return merged


def load_keymap(path: str | Path) -> dict[str, int]:
    """Read a keymap file and merge it over the default layout."""
    path = Path(path)
    try:
        entries = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise KeymapError(f"Failed to parse keymap file: {path}: {e}") from e
    return merge_keymap(parse_keymap(entries))
