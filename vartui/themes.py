"""Theme catalogue, alias normalization and prompt_toolkit style presets."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, List, Optional

from .models import DEFAULT_THEME

AUTO_THEME = "auto"

THEME_CATALOG: List[str] = [
    "dracula",
    "one-dark-pro",
    "nord",
    "catppuccin-mocha",
    "catppuccin-latte",
    "gruvbox-dark",
    "gruvbox-light",
    "tokyo-night",
    "solarized-dark",
    "solarized-light",
    "monokai-pro",
    "rose-pine",
    "kanagawa",
    "everforest",
    "cyberpunk",
]

# Order used when cycling with up/down in the config form.
THEME_CYCLE: List[str] = [AUTO_THEME] + THEME_CATALOG

THEME_ALIASES: Dict[str, str] = {
    "default": AUTO_THEME,
    "system": AUTO_THEME,
    "tokyo": "tokyo-night",
    "catppuccin": "catppuccin-mocha",
    "catppuccin-dark": "catppuccin-mocha",
    "mocha": "catppuccin-mocha",
    "catppuccin-light": "catppuccin-latte",
    "latte": "catppuccin-latte",
    "gruvbox": "gruvbox-dark",
    "solarized": "solarized-dark",
}

LIGHT_THEMES = {"catppuccin-latte", "gruvbox-light", "solarized-light"}


def normalize_theme_key(raw: Optional[str]) -> str:
    value = (raw or "").strip().lower()
    if not value:
        return DEFAULT_THEME
    return THEME_ALIASES.get(value, value)


def resolve_theme_slug(raw: Optional[str]) -> str:
    """Return a catalogue slug; ``auto`` follows VARTUI_SYSTEM_THEME (light/dark)."""
    key = normalize_theme_key(raw)
    if key == AUTO_THEME:
        hint = os.environ.get("VARTUI_SYSTEM_THEME", "").strip().lower()
        return "solarized-light" if hint in ("light", "0", "false") else DEFAULT_THEME
    return key if key in THEME_CATALOG else DEFAULT_THEME


def cycle_theme(current: Optional[str], step: int) -> str:
    key = normalize_theme_key(current)
    try:
        idx = THEME_CYCLE.index(key)
    except ValueError:
        return THEME_CYCLE[0]
    return THEME_CYCLE[(idx + step) % len(THEME_CYCLE)]


@dataclass(frozen=True)
class Palette:
    bg: str
    fg: str
    accent: str
    muted: str
    success: str
    error: str
    warning: str
    selection: str


PALETTES: Dict[str, Palette] = {
    "dracula": Palette("#282a36", "#f8f8f2", "#bd93f9", "#6272a4", "#50fa7b", "#ff5555", "#f1fa8c", "#44475a"),
    "one-dark-pro": Palette("#282c34", "#abb2bf", "#61afef", "#5c6370", "#98c379", "#e06c75", "#e5c07b", "#3e4451"),
    "nord": Palette("#2e3440", "#d8dee9", "#88c0d0", "#4c566a", "#a3be8c", "#bf616a", "#ebcb8b", "#434c5e"),
    "catppuccin-mocha": Palette("#1e1e2e", "#cdd6f4", "#89b4fa", "#6c7086", "#a6e3a1", "#f38ba8", "#f9e2af", "#313244"),
    "catppuccin-latte": Palette("#eff1f5", "#4c4f69", "#1e66f5", "#9ca0b0", "#40a02b", "#d20f39", "#df8e1d", "#ccd0da"),
    "gruvbox-dark": Palette("#282828", "#ebdbb2", "#83a598", "#928374", "#b8bb26", "#fb4934", "#fabd2f", "#3c3836"),
    "gruvbox-light": Palette("#fbf1c7", "#3c3836", "#076678", "#928374", "#79740e", "#9d0006", "#b57614", "#ebdbb2"),
    "tokyo-night": Palette("#1a1b26", "#c0caf5", "#7aa2f7", "#565f89", "#9ece6a", "#f7768e", "#e0af68", "#283457"),
    "solarized-dark": Palette("#002b36", "#839496", "#268bd2", "#586e75", "#859900", "#dc322f", "#b58900", "#073642"),
    "solarized-light": Palette("#fdf6e3", "#657b83", "#268bd2", "#93a1a1", "#859900", "#dc322f", "#b58900", "#eee8d5"),
    "monokai-pro": Palette("#2d2a2e", "#fcfcfa", "#78dce8", "#727072", "#a9dc76", "#ff6188", "#ffd866", "#403e41"),
    "rose-pine": Palette("#191724", "#e0def4", "#c4a7e7", "#6e6a86", "#9ccfd8", "#eb6f92", "#f6c177", "#26233a"),
    "kanagawa": Palette("#1f1f28", "#dcd7ba", "#7e9cd8", "#727169", "#98bb6c", "#e82424", "#e6c384", "#2d4f67"),
    "everforest": Palette("#2d353b", "#d3c6aa", "#7fbbb3", "#859289", "#a7c080", "#e67e80", "#dbbc7f", "#3d484d"),
    "cyberpunk": Palette("#000b1e", "#0abdc6", "#ea00d9", "#133e7c", "#00ff9f", "#ff003c", "#f3e600", "#1b1f3b"),
}


def style_rules(raw_theme: Optional[str]) -> Dict[str, str]:
    """Map a theme name to prompt_toolkit style rules."""
    p = PALETTES[resolve_theme_slug(raw_theme)]
    return {
        '': f'bg:{p.bg} {p.fg}',
        'frame.border': p.muted,
        'frame.label': f'bold {p.accent}',
        'day': p.fg,
        'day.ok': p.success,
        'day.short': p.error,
        'day.muted': p.muted,
        'row.selected': f'bold {p.accent} bg:{p.selection}',
        'entry.selected': f'bold {p.warning} bg:{p.selection}',
        'status': p.fg,
        'status.keys': p.muted,
        'modal': f'bg:{p.selection} {p.fg}',
        'modal.field': p.fg,
        'modal.field.focused': f'bold {p.accent}',
        'modal.dropdown': p.fg,
        'modal.dropdown.cursor': f'reverse {p.accent}',
        'modal.hint': p.muted,
    }
