from __future__ import annotations

import logging
import os
import shutil
import threading
from dataclasses import dataclass
from pathlib import Path, PurePath

import PIL
import pillow_heif
from PIL import Image, features

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "heic", "heif", "webp", "tiff", "tif", "bmp", "avif"})
PASSTHROUGH_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif"})
TRANSCODE_SUFFIX = ".jpg"
JPEG_QUALITY = 95

_heif_lock = threading.Lock()
_heif_registered = False


def register_heif_opener() -> None:
    """Teach Pillow to open HEIC/HEIF. Safe to call repeatedly."""
    global _heif_registered
    with _heif_lock:
        if _heif_registered:
            return
        pillow_heif.register_heif_opener()
        _heif_registered = True


def extension_of(path: str | PurePath) -> str:
    return PurePath(str(path)).suffix.lower().lstrip(".")


EXIF_FORMATS = frozenset({"HEIC", "HEIF", "TIFF", "TIF", "JPEG", "JPG", "WEBP", "AVIF"})


def format_has_exif(fmt: str) -> bool:
    """Whether files of this format can carry an EXIF block."""
    return fmt.upper() in EXIF_FORMATS


def preservation_note(fmt: str) -> str:
    fmt = fmt.upper()
    if fmt in ("HEIC", "HEIF"):
        return f"{fmt}: EXIF data preserved where present (decoded via libheif)"
    if fmt in ("TIFF", "TIF"):
        return f"{fmt}: tags stored in TIFF directories are not carried over to the JPEG"
    if fmt == "WEBP":
        return "WEBP: EXIF preserved if present in source; XMP is not carried over"
    if fmt == "BMP":
        return "BMP: BMP files do not contain EXIF metadata"
    if fmt == "AVIF":
        return "AVIF: metadata preservation depends on decoder support"
    if format_has_exif(fmt):
        return f"{fmt}: EXIF data preserved where present"
    return f"{fmt}: format carries no EXIF metadata"


@dataclass(frozen=True)
class ConversionResult:
    converted: bool
    original_format: str | None = None
    metadata_preserved: bool = False

    @classmethod
    def copied(cls) -> ConversionResult:
        return cls(converted=False)


class ImageConverter:
    def __init__(self, jpeg_quality: int = JPEG_QUALITY):
        register_heif_opener()
        self.jpeg_quality = jpeg_quality

    def classify(self, path: str | PurePath) -> bool:
        return extension_of(path) in IMAGE_EXTENSIONS

    def needs_transcode(self, path: Path) -> bool:
        ext = extension_of(path)
        if ext in PASSTHROUGH_EXTENSIONS:
            return False
        if ext == "webp" and self.is_animated_webp(path):
            return False
        return True

    def is_animated_webp(self, path: Path) -> bool:
        # Anything we cannot read here is treated as "not animated" and left
        # for the transcoder to report.
        try:
            with Image.open(path) as img:
                return bool(getattr(img, "is_animated", False))
        except Exception as exc:
            logger.debug("Animation check failed for %s: %s", path, exc)
            return False

    def convert(self, input_path: Path, output_path: Path) -> ConversionResult:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        partial = output_path.with_name(f".{output_path.name}.partial")

        try:
            if self.needs_transcode(input_path):
                fmt = extension_of(input_path).upper()
                preserved = self._transcode_to_jpeg(input_path, partial, fmt)
                result = ConversionResult(converted=True, original_format=fmt, metadata_preserved=preserved)
            else:
                shutil.copyfile(input_path, partial)
                result = ConversionResult.copied()
            os.replace(partial, output_path)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        return result

    def _transcode_to_jpeg(self, input_path: Path, output_path: Path, fmt: str) -> bool:
        with Image.open(input_path) as img:
            img.load()
            exif_bytes = b""
            if format_has_exif(fmt) and img.info.get("exif"):
                exif = img.getexif()
                exif_bytes = exif.tobytes() if len(exif) else b""
            icc_profile = img.info.get("icc_profile")

            rgb = self._flatten_on_white(img)

        save_kwargs = {"quality": self.jpeg_quality}
        if exif_bytes:
            save_kwargs["exif"] = exif_bytes
        if icc_profile:
            save_kwargs["icc_profile"] = icc_profile

        with output_path.open("wb") as fh:
            rgb.save(fh, format="JPEG", **save_kwargs)
        return bool(exif_bytes)

    @staticmethod
    def _to_8bit(img: Image.Image) -> Image.Image:
        # convert("RGB") clips wide modes at 255 instead of scaling them.
        if img.mode.startswith("I;16"):
            return img.convert("I").point(lambda v: v * (1 / 256)).convert("L")
        if img.mode not in ("I", "F"):
            return img

        high = img.getextrema()[1]
        if img.mode == "F" and high <= 1.0:
            scale = 255.0
        elif high > 255:
            scale = 255.0 / high
        else:
            scale = 1.0
        return img.point(lambda v: v * scale).convert("L")

    @staticmethod
    def _flatten_on_white(img: Image.Image) -> Image.Image:
        img = ImageConverter._to_8bit(img)
        has_alpha = img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info)
        if not has_alpha:
            return img.convert("RGB")

        rgba = img.convert("RGBA")
        background = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        return Image.alpha_composite(background, rgba).convert("RGB")


def get_diagnostics() -> dict:
    diagnostics = {
        "pillow": {"ok": True, "version": PIL.__version__},
        "heif": {"ok": False, "version": None, "error": None},
        "webp": {"ok": False},
        "avif": {"ok": False},
        "jpeg_quality": JPEG_QUALITY,
    }

    try:
        register_heif_opener()
        diagnostics["heif"]["ok"] = True
        diagnostics["heif"]["version"] = pillow_heif.__version__
    except Exception as exc:
        diagnostics["heif"]["error"] = str(exc)

    diagnostics["webp"]["ok"] = bool(features.check("webp"))
    diagnostics["avif"]["ok"] = bool(features.check("avif"))

    return diagnostics
