"""Responsive ``<picture>`` markup for generated derivatives."""
import html
from typing import List, Optional

from .generator import derivative_name
from .schemas import WEBP_LABEL, DerivativeSpec, SizePreset

SRCSET_LABELS = ("small", "medium", "large")
SRC_LABEL = "medium"


def _srcset_presets(spec: DerivativeSpec) -> List[SizePreset]:
    """Presets offered in ``srcset``, narrowest first.

    Uses small/medium/large when the spec has them, otherwise every preset.
    """
    chosen = [p for p in spec.presets if p.label in SRCSET_LABELS] or list(spec.presets)
    return sorted(chosen, key=lambda p: p.width)


def _sizes_attr(presets: List[SizePreset]) -> str:
    # Each width is picked up to a viewport 1.5x wider; the widest is the default.
    rules = [f"(max-width: {p.width * 3 // 2}px) {p.width}px" for p in presets[:-1]]
    rules.append(f"{presets[-1].width}px")
    return ", ".join(rules)


def render_picture(
    base_url: str, filename: str, alt: str = "", spec: Optional[DerivativeSpec] = None
) -> str:
    """Render a ``<picture>`` element that prefers WebP and falls back to JPEG.

    Args:
        base_url: URL prefix the derivative file names are appended to
        filename: Generated upload filename shared by all derivatives
        alt: Alternative text for the image
        spec: Preset set the derivatives were generated with; defaults to
            the standard five sizes

    Returns:
        HTML snippet with a WebP ``<source>`` and a lazily loaded ``<img>``
        offering the small, medium and large derivatives (or, for a custom
        preset set without those labels, every preset)
    """
    spec = spec or DerivativeSpec()
    presets = _srcset_presets(spec)
    base = base_url.rstrip("/")

    def url(label: str) -> str:
        return html.escape(f"{base}/{derivative_name(label, filename)}", quote=True)

    labels = [p.label for p in presets]
    src_label = SRC_LABEL if SRC_LABEL in labels else labels[len(labels) // 2]
    srcset = ",\n      ".join(f"{url(p.label)} {p.width}w" for p in presets)

    return (
        "<picture>\n"
        f'  <source srcset="{url(WEBP_LABEL)}" type="image/webp">\n'
        "  <img\n"
        f'    src="{url(src_label)}"\n'
        f'    srcset="\n      {srcset}\n    "\n'
        f'    sizes="{_sizes_attr(presets)}"\n'
        f'    alt="{html.escape(alt, quote=True)}"\n'
        '    loading="lazy"\n'
        "  >\n"
        "</picture>\n"
    )
