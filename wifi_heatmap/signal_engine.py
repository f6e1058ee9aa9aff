from __future__ import annotations

from math import floor
from typing import Dict, Iterable, List

from .models import (
    ALL_ACCESS_POINTS,
    RGB,
    AccessPoint,
    APMap,
    BandCounts,
    CoverageStats,
    Measurement,
    Samples,
)

# Colour ramp endpoints (dBm).
WEAKEST_DBM = -85
STRONGEST_DBM = -35

# Legend bands. Kept independent of the ramp midpoint (-60).
EXCELLENT_THRESHOLD = -50
GOOD_THRESHOLD = -70

BANDS = ("excellent", "good", "poor")

LEGEND = (
    ("excellent", "-35 to -50 dBm"),
    ("good", "-51 to -70 dBm"),
    ("poor", "-71 to -85 dBm"),
)


def normalize(signal_strength: float) -> float:
    t = (signal_strength - WEAKEST_DBM) / (STRONGEST_DBM - WEAKEST_DBM)
    return max(0.0, min(1.0, t))


def color_for(signal_strength: float) -> RGB:
    """Red -> yellow -> green ramp; out-of-range values clamp to the ends."""
    t = normalize(signal_strength)
    if t < 0.5:
        factor = t * 2
        return (255, floor(255 * factor), 0)
    factor = (t - 0.5) * 2
    return (floor(255 * (1 - factor)), 255, 0)


def classify(signal_strength: float) -> str:
    if signal_strength >= EXCELLENT_THRESHOLD:
        return "excellent"
    if signal_strength >= GOOD_THRESHOLD:
        return "good"
    return "poor"


def filter_samples(samples: Iterable[Measurement], selected_ap: str = ALL_ACCESS_POINTS) -> List[Measurement]:
    if selected_ap == ALL_ACCESS_POINTS:
        return list(samples)
    return [m for m in samples if m.bssid == selected_ap]


def derive_access_points(samples: Iterable[Measurement]) -> List[AccessPoint]:
    """One AccessPoint per bssid, in first-seen order; later samples overwrite the details."""
    aps: APMap = {}
    for m in samples:
        aps[m.bssid] = AccessPoint(
            bssid=m.bssid,
            ssid=m.ssid,
            channel=m.channel,
            frequency=m.frequency,
        )
    return list(aps.values())


def band_counts(samples: Iterable[Measurement]) -> BandCounts:
    counts: BandCounts = {band: 0 for band in BANDS}
    for m in samples:
        counts[classify(m.signal_strength)] += 1
    return counts


def _round_half_up(value: float) -> int:
    # Halves round toward +inf, so -60.5 -> -60.
    return floor(value + 0.5)


def compute_stats(samples: Samples, selected_ap: str = ALL_ACCESS_POINTS) -> CoverageStats:
    filtered = filter_samples(samples, selected_ap)
    stats = CoverageStats(access_points=len(derive_access_points(samples)))
    if not filtered:
        return stats

    strengths = [m.signal_strength for m in filtered]
    counts = band_counts(filtered)
    stats.total = len(filtered)
    stats.average = _round_half_up(sum(strengths) / len(strengths))
    stats.minimum = min(strengths)
    stats.maximum = max(strengths)
    stats.excellent = counts["excellent"]
    stats.good = counts["good"]
    stats.poor = counts["poor"]
    stats.unique_ssids = len({m.ssid for m in filtered})
    stats.unique_bssids = len({m.bssid for m in filtered})
    return stats


def recommendations(stats: CoverageStats) -> List[str]:
    if stats.total == 0:
        return ["No measurements registered yet."]

    out: List[str] = []
    if stats.poor > stats.total * 0.3:
        out.append(
            f"High share of weak signals ({_round_half_up(stats.share('poor') * 100)}%): "
            "consider adding more access points."
        )
    elif stats.excellent > stats.total * 0.7:
        out.append(
            f"Excellent coverage ({_round_half_up(stats.share('excellent') * 100)}%): "
            "the WiFi network is performing well."
        )
    else:
        out.append("Acceptable coverage: minor adjustments could improve the signal.")

    if stats.unique_bssids > 5:
        out.append("Many access points detected. Make sure channels are well distributed.")
    return out


def _access_point_rows(samples: Samples) -> List[Dict]:
    rows: List[Dict] = []
    for ap in derive_access_points(samples):
        strengths = [m.signal_strength for m in samples if m.bssid == ap.bssid]
        rows.append(
            {
                "ap": ap,
                "count": len(strengths),
                "average": _round_half_up(sum(strengths) / len(strengths)),
                "best": max(strengths),
            }
        )
    return rows


def build_report(samples: Samples, selected_ap: str = ALL_ACCESS_POINTS, title: str = "WiFi coverage report") -> str:
    filtered = filter_samples(samples, selected_ap)
    stats = compute_stats(samples, selected_ap)

    lines = [title, "=" * len(title), ""]
    if selected_ap != ALL_ACCESS_POINTS:
        lines.append(f"Access point filter: {selected_ap}")
    lines += [
        f"Measurements:   {stats.total}",
        f"Access points:  {stats.access_points}",
        f"Networks:       {stats.unique_ssids}",
        f"Average signal: {stats.average} dBm",
    ]
    if stats.total:
        lines.append(f"Range:          {stats.minimum} .. {stats.maximum} dBm")

    lines += ["", "Coverage quality"]
    ranges = dict(LEGEND)
    for band in BANDS:
        count = getattr(stats, band)
        lines.append(f"  {band:<10} {ranges[band]:<15} {count:>4}  ({_round_half_up(stats.share(band) * 100)}%)")

    rows = _access_point_rows(filtered)
    if rows:
        lines += ["", "Access points"]
        for row in rows:
            ap = row["ap"]
            lines.append(
                f"  {ap.ssid} [{ap.bssid}] ch {ap.channel} / {ap.frequency:g} MHz: "
                f"{row['count']} samples, avg {row['average']} dBm, best {row['best']} dBm"
            )

    lines += ["", "Recommendations"]
    lines += [f"  - {text}" for text in recommendations(stats)]
    return "\n".join(lines) + "\n"
