"""
Design tokens handed to the renderer: color palette, font roles and chart
styling. Professional, clean, dark-on-light with a blue accent.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional


@dataclass(frozen=True)
class ColorTokens:
    primary: str = "#1a1a2e"            # headings, titles
    secondary: str = "#16213e"          # subtitles
    accent: str = "#0f3460"             # highlights
    background: str = "#ffffff"
    surface: str = "#f8f9fa"            # cards, alternate rows
    text: str = "#1a1a2e"
    text_secondary: str = "#6c757d"     # labels
    positive: str = "#198754"           # upward trends
    negative: str = "#dc3545"           # downward trends


@dataclass(frozen=True)
class FontTokens:
    heading: str = "Helvetica Neue"
    body: str = "Helvetica Neue"
    mono: str = "Courier New"


@dataclass(frozen=True)
class ChartTokens:
    palette: List[str] = field(
        default_factory=lambda: [
            "#0f3460",  # deep blue
            "#e94560",  # coral red
            "#533483",  # purple
            "#0ea5e9",  # sky blue
            "#f59e0b",  # amber
            "#10b981",  # emerald
            "#8b5cf6",  # violet
            "#ec4899",  # pink
        ]
    )
    grid_color: str = "#e5e7eb"
    label_size: int = 10


@dataclass(frozen=True)
class DesignTokens:
    colors: ColorTokens = field(default_factory=ColorTokens)
    fonts: FontTokens = field(default_factory=FontTokens)
    chart: ChartTokens = field(default_factory=ChartTokens)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_DESIGN_TOKENS = DesignTokens()


def _merge_group(group: Any, overrides: Optional[Mapping[str, Any]]) -> Any:
    if not overrides:
        return group
    known = {f.name for f in fields(group)}
    unknown = set(overrides) - known
    if unknown:
        raise ValueError(f"Unknown design token(s) for {type(group).__name__}: {', '.join(sorted(unknown))}")
    return replace(group, **dict(overrides))


def merge_design_tokens(overrides: Optional[Mapping[str, Mapping[str, Any]]] = None) -> DesignTokens:
    """Defaults with partial overrides applied per group (colors / fonts / chart)."""
    overrides = overrides or {}
    unknown = set(overrides) - {"colors", "fonts", "chart"}
    if unknown:
        raise ValueError(f"Unknown design token group(s): {', '.join(sorted(unknown))}")
    return DesignTokens(
        colors=_merge_group(DEFAULT_DESIGN_TOKENS.colors, overrides.get("colors")),
        fonts=_merge_group(DEFAULT_DESIGN_TOKENS.fonts, overrides.get("fonts")),
        chart=_merge_group(DEFAULT_DESIGN_TOKENS.chart, overrides.get("chart")),
    )
