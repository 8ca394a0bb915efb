"""
NoteFlow Backend - Size/Type Classifier
=========================================

What:  Decides, from a media type and a measured size, whether a file needs
       compression and whether it can be accepted at all.
How:   Pure function of its inputs and the configured PolicyLimits.
Who:   Called by IntakeService once per intake operation.

Decision table (strict `>` comparisons throughout):

    compressible?  size                         needs_compression  eligible
    ─────────────  ───────────────────────────  ─────────────────  ────────
    no             <= hard limit                False              True
    no             >  hard limit                False              False
    yes            <= compression threshold     False              True
    yes            >  threshold, <= ceiling     True               True
    yes            >  max intake ceiling        False              False

A compressible file exactly at the threshold is accepted untouched; one byte
over takes the compression path.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Optional

DEFAULT_COMPRESSIBLE_TYPES: FrozenSet[str] = frozenset({"application/pdf"})


@dataclass(frozen=True)
class PolicyLimits:
    """Size policy applied to every intake operation."""

    hard_limit_bytes: int
    compression_threshold_bytes: Optional[int] = None
    max_intake_bytes: Optional[int] = None
    compressible_media_types: FrozenSet[str] = field(default=DEFAULT_COMPRESSIBLE_TYPES)

    def __post_init__(self):
        if self.hard_limit_bytes <= 0:
            raise ValueError("hard_limit_bytes must be positive")
        if self.threshold > self.hard_limit_bytes:
            raise ValueError("compression threshold must not exceed the hard limit")

    @property
    def threshold(self) -> int:
        if self.compression_threshold_bytes is None:
            return self.hard_limit_bytes
        return self.compression_threshold_bytes

    @classmethod
    def from_settings(cls, settings) -> "PolicyLimits":
        return cls(
            hard_limit_bytes=settings.hard_limit_bytes,
            compression_threshold_bytes=settings.effective_compression_threshold,
            max_intake_bytes=settings.max_intake_bytes,
            compressible_media_types=settings.compressible_media_types_set,
        )


@dataclass(frozen=True)
class Classification:
    needs_compression: bool
    eligible: bool
    reason: str


def normalize_media_type(media_type: Optional[str]) -> str:
    """'Application/PDF; charset=binary' -> 'application/pdf'; None -> ''."""
    if not media_type:
        return ""
    return media_type.split(";", 1)[0].strip().lower()


def is_compressible(media_type: Optional[str], limits: PolicyLimits) -> bool:
    normalized = normalize_media_type(media_type)
    return bool(normalized) and normalized in limits.compressible_media_types


def classify(media_type: Optional[str], size_bytes: int, limits: PolicyLimits) -> Classification:
    """
    Classify one candidate file against the size policy.

    Args:
        media_type: Declared media type (untrusted, may be empty or unknown;
                    unknown types are opaque and never compressed)
        size_bytes: Measured size in bytes, >= 0
        limits:     Active PolicyLimits

    Returns:
        Classification(needs_compression, eligible, reason)

    Raises:
        ValueError: size_bytes is negative
    """
    if size_bytes < 0:
        raise ValueError(f"size_bytes must be >= 0, got {size_bytes}")

    hard = limits.hard_limit_bytes

    if not is_compressible(media_type, limits):
        if size_bytes > hard:
            return Classification(
                needs_compression=False,
                eligible=False,
                reason=(
                    f"{size_bytes} bytes exceeds the {hard} byte limit and "
                    f"'{normalize_media_type(media_type) or 'unknown'}' files cannot be compressed"
                ),
            )
        return Classification(needs_compression=False, eligible=True, reason="within limit")

    ceiling = limits.max_intake_bytes
    if ceiling is not None and size_bytes > ceiling:
        return Classification(
            needs_compression=False,
            eligible=False,
            reason=f"{size_bytes} bytes exceeds the {ceiling} byte intake ceiling",
        )

    if size_bytes > limits.threshold:
        return Classification(
            needs_compression=True,
            eligible=True,
            reason=f"{size_bytes} bytes exceeds the {limits.threshold} byte compression threshold",
        )

    return Classification(needs_compression=False, eligible=True, reason="within limit")


def intake_ceiling(media_type: Optional[str], limits: PolicyLimits) -> Optional[int]:
    """
    Largest size classify() could still accept for this media type.

    Lets a caller stop receiving bytes early. None means compressible files
    have no ceiling configured.
    """
    if not is_compressible(media_type, limits):
        return limits.hard_limit_bytes
    return limits.max_intake_bytes
