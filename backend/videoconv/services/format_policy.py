from dataclasses import dataclass, field
from typing import Optional, Tuple

from videoconv.errors import InvalidFormat

SUPPORTED_INPUT_FORMATS = ("mp4", "mkv", "mov", "avi", "flv", "wmv", "ivf")


@dataclass(frozen=True)
class Profile:
    container: str
    video_codec: str
    audio_codec: Optional[str] = None
    video_flags: Tuple[str, ...] = field(default_factory=tuple)


# One row per output container. Audio codec None drops audio: IVF holds a
# single video stream.
PROFILES = {
    "ivf": Profile(
        container="ivf",
        video_codec="libvpx",
        audio_codec=None,
        video_flags=("-b:v", "1M", "-quality", "good", "-cpu-used", "0", "-deadline", "best"),
    ),
    "mp4": Profile(
        container="mp4",
        video_codec="libx264",
        audio_codec="aac",
        video_flags=("-preset", "slow", "-crf", "22", "-pix_fmt", "yuv420p"),
    ),
}

SUPPORTED_OUTPUT_FORMATS = tuple(PROFILES)


def normalize_extension(ext: str) -> str:
    return (ext or "").strip().lstrip(".").lower()


def validate_input_format(name: str) -> str:
    fmt = normalize_extension(name)
    if fmt not in SUPPORTED_INPUT_FORMATS:
        raise InvalidFormat(
            f"Unsupported file format: .{fmt}. "
            f"Supported formats: {', '.join('.' + f for f in SUPPORTED_INPUT_FORMATS)}"
        )
    return fmt


def resolve(input_ext: str, output_format: str) -> Profile:
    """Map an input extension and requested output format to a transcode profile."""
    validate_input_format(input_ext)
    profile = PROFILES.get(normalize_extension(output_format))
    if profile is None:
        raise InvalidFormat(
            f"Unsupported output format: {output_format}. "
            f"Supported formats: {', '.join(SUPPORTED_OUTPUT_FORMATS)}"
        )
    return profile
