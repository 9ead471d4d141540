"""
incentive_engines.bands -- Band resolution for tier tables and matrix axes.

Responsibility:
    Map a resolved metric value onto an ordered band list.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Bands are inclusive on both ends of their own range: a value equal
      to band N's max belongs to band N, not band N+1.
    - Tier policy (``resolve_tier``):
        * value inside a band       -> that band
        * value in a gap between bands -> the lower band
        * value below the first band   -> no band (pays $0)
        * value above a finite top band -> the top band (clamped)
    - Axis policy (``resolve_axis``, matrix rows/columns): values outside
      the outermost bands clamp to the nearest edge band in both
      directions, so the result is always a valid index.

Failure modes:
    - ValueError on an empty band list (plans are validated at load time,
      so this indicates a programming error).
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from incentive_kernel.domain.plan import Band


@dataclass(frozen=True)
class BandHit:
    """
    Outcome of a band lookup.

    ``index`` is None only when a tier lookup fell below the first band.
    ``clamped`` is "below", "above" or None.  ``boundary`` is True when the
    value sits exactly on the hit band's min or max.
    """

    index: int | None
    band: Band | None
    clamped: str | None = None
    in_gap: bool = False
    boundary: bool = False

    def to_dict(self) -> dict:
        return {
            "band_index": self.index,
            "band_label": self.band.label if self.band else None,
            "clamped": self.clamped,
            "in_gap": self.in_gap,
            "boundary": self.boundary,
        }


def _on_edge(band: Band, value: Decimal) -> bool:
    return value == band.min or (band.max is not None and value == band.max)


def resolve_tier(value: Decimal, bands: Sequence[Band]) -> BandHit:
    """Resolve ``value`` against ascending tier bands."""
    if not bands:
        raise ValueError("resolve_tier requires at least one band")

    if value < bands[0].min:
        return BandHit(index=None, band=None, clamped="below")

    for index, band in enumerate(bands):
        if band.contains(value):
            return BandHit(index=index, band=band, boundary=_on_edge(band, value))
        following = bands[index + 1] if index + 1 < len(bands) else None
        if following is not None and band.max is not None and band.max < value < following.min:
            return BandHit(index=index, band=band, in_gap=True)

    top = len(bands) - 1
    return BandHit(index=top, band=bands[top], clamped="above")


def resolve_axis(value: Decimal, bands: Sequence[Band]) -> BandHit:
    """Resolve ``value`` against a matrix axis, clamping both directions."""
    if not bands:
        raise ValueError("resolve_axis requires at least one band")

    if value < bands[0].min:
        return BandHit(index=0, band=bands[0], clamped="below")

    return resolve_tier(value, bands)
