"""
Tempo Core - Functional Core

Pure functions for MIDI timing: tick/second conversion, tempo curve
construction and the tempo warp that turns nominal times into real times.
No side effects, no I/O.

Timing model:
    Decoding happens in two stages. Stage 1 computes *nominal* times,
    assuming the whole file plays at the header's reference tempo. These
    times are intentionally wrong wherever the tempo changes. Stage 2
    (apply_tempo_changes) warps them into real elapsed seconds once every
    tempo change in the file is known.

The functions here work on any frozen dataclass element exposing `time`
(and optionally `duration`), so notes and control changes share them.
"""

from bisect import bisect_right
from dataclasses import dataclass, replace
from typing import List, Sequence, TypeVar

DEFAULT_BPM = 120.0
DEFAULT_TEMPO = 500000  # microseconds per quarter note at 120 BPM

E = TypeVar('E')


@dataclass(frozen=True)
class TempoBreakpoint:
    """A point where the tempo curve changes

    Attributes:
        time: Nominal time in seconds (reference-tempo timeline)
        bpm: Tempo from this point on, in beats per minute
    """
    time: float
    bpm: float


# ============================================================================
# Tempo Calculations
# ============================================================================

def tempo_to_bpm(tempo_microseconds: int) -> float:
    """Convert MIDI tempo (microseconds per beat) to BPM

    Args:
        tempo_microseconds: Tempo in microseconds per quarter note

    Returns:
        Tempo in beats per minute
    """
    return 60 / (tempo_microseconds / 1_000_000)


def bpm_to_tempo(bpm: float) -> int:
    """Convert BPM to MIDI tempo (microseconds per beat)

    Args:
        bpm: Beats per minute

    Returns:
        Tempo in microseconds per quarter note, rounded to an integer
    """
    return int(round(60_000_000 / bpm))


def ticks_to_seconds(ticks: float, ppq: int, bpm: float) -> float:
    """Convert a tick count to seconds under a constant tempo

    Works from BPM directly rather than mido.tick2second, which takes an
    integer microsecond tempo and would round non-integer tempos.

    Args:
        ticks: Number of ticks (usually a delta)
        ppq: Pulses (ticks) per quarter note
        bpm: Constant tempo in beats per minute

    Returns:
        Elapsed seconds
    """
    return ticks / ppq * (60 / bpm)


def seconds_to_ticks(seconds: float, ppq: int, bpm: float) -> int:
    """Inverse of ticks_to_seconds, rounded to the nearest whole tick"""
    return int(round(seconds * bpm / 60 * ppq))


# ============================================================================
# Tempo Curve
# ============================================================================

def insert_tempo_breakpoint(
    breakpoints: List[TempoBreakpoint],
    breakpoint: TempoBreakpoint
) -> int:
    """Insert a breakpoint keeping the curve ordered by time

    Tempo changes can be discovered out of order when they are spread over
    several tracks. The new breakpoint goes right after the last existing
    breakpoint whose time is <= its own, so equal-time entries keep their
    discovery order and the later one wins during warping.

    Mutates `breakpoints` in place.

    Returns:
        Index where the breakpoint was inserted
    """
    index = bisect_right(breakpoints, breakpoint.time, key=lambda b: b.time)
    breakpoints.insert(index, breakpoint)
    return index


def merge_tempo_breakpoints(
    breakpoints: List[TempoBreakpoint],
    discovered: Sequence[TempoBreakpoint]
) -> List[TempoBreakpoint]:
    """Insert every breakpoint from `discovered` into `breakpoints`

    Returns:
        The same `breakpoints` list, for chaining
    """
    for breakpoint in discovered:
        insert_tempo_breakpoint(breakpoints, breakpoint)
    return breakpoints


# ============================================================================
# Tempo Warp
# ============================================================================

def apply_tempo_changes(
    elements: Sequence[E],
    breakpoints: Sequence[TempoBreakpoint],
    reference_bpm: float
) -> List[E]:
    """Warp nominal element times into real times

    Piecewise-linear reparametrization of the nominal timeline: inside the
    segment governed by a breakpoint, nominal seconds are multiplied by
    `reference_bpm / breakpoint.bpm`. Elements before the first breakpoint
    are left untouched. Durations are scaled by the ratio of the segment the
    element starts in, so a note spanning a tempo change is approximated.

    The scan walks the curve forward only, so elements are stably sorted by
    nominal time first. Pipeline output is already in that order.

    Args:
        elements: Frozen dataclasses with `time` and optionally `duration`
        breakpoints: Tempo curve sorted by time
        reference_bpm: Tempo the nominal times were computed with

    Returns:
        New list of warped elements (input is not modified)
    """
    ordered = sorted(elements, key=lambda e: e.time)
    if not breakpoints:
        return ordered

    warped = []
    old_time = 0.0
    new_time = 0.0
    index = 0
    speed = 1.0

    for element in ordered:
        if element.time < breakpoints[0].time:
            warped.append(element)
            continue

        old_time = breakpoints[index].time
        speed = reference_bpm / breakpoints[index].bpm

        while index + 1 < len(breakpoints) and element.time >= breakpoints[index + 1].time:
            new_time += (breakpoints[index + 1].time - old_time) * speed
            index += 1
            old_time = breakpoints[index].time
            speed = reference_bpm / breakpoints[index].bpm

        changes = {'time': (element.time - old_time) * speed + new_time}
        duration = getattr(element, 'duration', None)
        if duration is not None:
            changes['duration'] = duration * speed
        warped.append(replace(element, **changes))

    return warped


# ============================================================================
# Uniform Rescale
# ============================================================================

def scale_elements(elements: Sequence[E], ratio: float) -> List[E]:
    """Stretch element times (and durations) by a constant ratio

    Used when the reference tempo changes after decoding: every time is
    multiplied by old_bpm / new_bpm.
    """
    scaled = []
    for element in elements:
        changes = {'time': element.time * ratio}
        duration = getattr(element, 'duration', None)
        if duration is not None:
            changes['duration'] = duration * ratio
        scaled.append(replace(element, **changes))
    return scaled
