"""Derivative generation and retention for uploaded images.

The generator turns one source image into a fixed set of derivatives:
one progressive JPEG per size preset and one WebP, all produced with a
cover fit (scale to fill the box, center-crop the overflow).

Output layout:
    <output_dir>/<label>_<base_filename>     one per size preset
    <output_dir>/webp_<stem>.webp            modern-format copy

Generation is all-or-nothing: every derivative is first written to a
hidden ``.<name>.part`` file beside its final name, and the set is moved
into place only once all of them succeed. On failure the staged files are
removed, so a previous set for the same base filename stays intact.

Thread Safety:
    ``generate`` and ``cleanup`` take a per-directory lock, so a retention
    sweep never deletes a derivative that a concurrent generation in the
    same process is writing. Separate worker processes are not coordinated.
"""
import logging
import os
import threading
import time
from collections import OrderedDict
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from PIL import Image, ImageOps

from .errors import ImageProcessingFailed
from .schemas import DerivativeSpec, SizePreset, WEBP_LABEL

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

_locks: Dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()


def directory_lock(directory: Path) -> threading.Lock:
    """Return the process-wide lock guarding one output directory."""
    key = str(Path(directory).resolve())
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.Lock()
        return lock


def derivative_name(label: str, base_filename: str) -> str:
    """File name of the derivative *label* for an upload named *base_filename*."""
    if label == WEBP_LABEL:
        return f"{WEBP_LABEL}_{Path(base_filename).stem}.webp"
    return f"{label}_{base_filename}"


def _staging_path(final: Path) -> Path:
    return final.with_name(f".{final.name}.part")


def _has_alpha(image: Image.Image) -> bool:
    return image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info)


def _flatten(image: Image.Image) -> Image.Image:
    """Convert to RGB, compositing transparent areas onto white."""
    if image.mode == "RGB":
        return image
    if _has_alpha(image):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return image.convert("RGB")


def _cover(image: Image.Image, preset: SizePreset) -> Image.Image:
    return ImageOps.fit(
        image,
        (preset.width, preset.height),
        method=Image.Resampling.LANCZOS,
        centering=(0.5, 0.5),
    )


class DerivativeGenerator:
    """Produces the derivative set for one source image at a time.

    Attributes:
        spec: Immutable preset set used for every call.
    """

    def __init__(self, spec: Optional[DerivativeSpec] = None) -> None:
        self.spec = spec or DerivativeSpec()

    def generate(self, input_path: str, output_dir: str, base_filename: str) -> Dict[str, str]:
        """Create every derivative of *input_path* under *output_dir*.

        Args:
            input_path: Readable, decodable raster image
            output_dir: Destination directory (created if absent)
            base_filename: Name shared by all derivatives of this upload

        Returns:
            Ordered mapping of label to absolute output path, one entry per
            preset plus ``webp``

        Raises:
            ImageProcessingFailed: If decoding, resizing, encoding or writing
                any derivative fails
            ValueError: If *base_filename* is not a bare file name
        """
        if not base_filename or Path(base_filename).name != base_filename:
            raise ValueError(f"base_filename must be a bare file name: {base_filename!r}")

        out_dir = Path(output_dir).resolve()
        # label -> (staging path, final path)
        staged: Dict[str, Tuple[Path, Path]] = OrderedDict()

        with directory_lock(out_dir):
            try:
                out_dir.mkdir(parents=True, exist_ok=True)

                with Image.open(input_path) as source:
                    source.load()
                    logger.info(
                        f"Processing image: {base_filename} ({source.width}x{source.height})"
                    )
                    flat = _flatten(source)

                    for preset in self.spec.presets:
                        final = out_dir / derivative_name(preset.label, base_filename)
                        staged[preset.label] = (_staging_path(final), final)
                        _cover(flat, preset).save(
                            staged[preset.label][0],
                            "JPEG",
                            quality=self.spec.raster_quality,
                            progressive=True,
                            optimize=True,
                        )
                        logger.debug(f"Created {preset.label}: {preset.width}x{preset.height}")

                    webp_source = source.convert("RGBA") if _has_alpha(source) else flat
                    final = out_dir / derivative_name(WEBP_LABEL, base_filename)
                    staged[WEBP_LABEL] = (_staging_path(final), final)
                    _cover(webp_source, self.spec.webp).save(
                        staged[WEBP_LABEL][0], "WEBP", quality=self.spec.webp_quality
                    )

                outputs = self._promote(staged)

            except (OSError, ValueError, Image.DecompressionBombError) as e:
                self._discard([tmp for tmp, _ in staged.values()])
                logger.error(f"Error optimizing image {base_filename}: {e}")
                raise ImageProcessingFailed(str(e)) from e

        logger.info(f"Created {len(outputs)} derivatives for {base_filename} in {out_dir}")
        return outputs

    def _promote(self, staged: Dict[str, Tuple[Path, Path]]) -> Dict[str, str]:
        """Move every staged derivative onto its final name."""
        outputs: Dict[str, str] = OrderedDict()
        for label, (tmp, final) in staged.items():
            os.replace(tmp, final)
            outputs[label] = str(final)
        return outputs

    def _discard(self, paths: List[Path]) -> None:
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not remove partial derivative {path}: {e}")

    def cleanup(self, directory: str, max_age_days: float = 30) -> List[str]:
        """Delete files in *directory* older than *max_age_days*.

        Only regular files are considered; subdirectories are left alone.
        A file that vanishes or cannot be removed mid-sweep is logged and
        skipped.

        Args:
            directory: Directory to sweep
            max_age_days: Age threshold in days, compared to modification time

        Returns:
            Names of the files removed
        """
        if max_age_days < 0:
            raise ValueError("max_age_days must be non-negative")

        target = Path(directory)
        if not target.is_dir():
            logger.debug(f"Cleanup skipped, no directory: {target}")
            return []

        max_age_seconds = max_age_days * SECONDS_PER_DAY
        removed: List[str] = []

        with directory_lock(target):
            now = time.time()
            for entry in sorted(target.iterdir()):
                try:
                    if not entry.is_file():
                        continue
                    if now - entry.stat().st_mtime > max_age_seconds:
                        entry.unlink()
                        removed.append(entry.name)
                        logger.info(f"Cleaned up old image: {entry}")
                except OSError as e:
                    logger.warning(f"Could not clean up {entry}: {e}")

        return removed
