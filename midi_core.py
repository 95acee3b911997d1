"""
MIDI Core - Functional Core

Pure functions for MIDI data transformations.
No file I/O - only calculations and data processing on already-tokenized
mido tracks. File and network I/O is handled by midi_shell.py.

Decode pipeline (per file):
    parse_header → demux_track (per raw track) → merge tempo curve
    → split_track (per raw track) → warp_tracks (once, globally)

Encode pipeline:
    encode_tracks → mido.MidiTrack list (delta ticks at the header tempo)
"""

import logging
import re
from collections import deque
from dataclasses import dataclass, field, replace
from typing import List, Tuple, Dict, Any, Optional, Sequence, Union

import mido  # type: ignore

from midi_types import (
    Note,
    ControlChange,
    Header,
    Track,
    Midi,
    PITCH_BEND,
    DEFAULT_TIME_SIGNATURE,
    gm_program_for_name,
)
from tempo_core import (
    DEFAULT_TEMPO,
    TempoBreakpoint,
    tempo_to_bpm,
    bpm_to_tempo,
    ticks_to_seconds,
    seconds_to_ticks,
    merge_tempo_breakpoints,
    apply_tempo_changes,
)

logger = logging.getLogger(__name__)

DEFAULT_PITCH_BEND_RANGE = 2  # semitones
PITCH_BEND_CENTER = 8192

# Registered parameter number controllers
DATA_ENTRY_MSB = 6
RPN_LSB = 100
RPN_MSB = 101

# Bank select travels with program changes; its value doubles as the track
# program when nothing else has set one.
TRACK_PROGRAM_CONTROLLER = 0

# Unrecognized instrument names get synthetic numbers from here upward
PLACEHOLDER_INSTRUMENT_BASE = 128

_CONTROL_CHARACTERS = re.compile(r'[\x00-\x1f\x7f]')


# ============================================================================
# Header
# ============================================================================

def parse_header(
    tracks: Sequence[Any],
    ticks_per_beat: int,
    format_type: int = 1
) -> Header:
    """Build the header from already-loaded mido tracks

    The reference tempo is the one in effect at tick 0: a set_tempo at the
    very start of any track, otherwise the MIDI default of 120 BPM. The
    first time signature found wins.

    Args:
        tracks: List of mido Track objects
        ticks_per_beat: MIDI ticks per quarter note
        format_type: SMF format (0, 1 or 2)

    Returns:
        Header without a name (names come from the demuxer)
    """
    tempo = None
    time_signature = None

    for track in tracks:
        tick = 0
        for msg in track:
            tick += msg.time
            if msg.type == 'set_tempo' and tick == 0 and tempo is None:
                tempo = msg.tempo
            elif msg.type == 'time_signature' and time_signature is None:
                time_signature = (msg.numerator, msg.denominator)

    return Header(
        ppq=ticks_per_beat,
        bpm=tempo_to_bpm(tempo if tempo is not None else DEFAULT_TEMPO),
        time_signature=time_signature or DEFAULT_TIME_SIGNATURE,
        format_type=format_type
    )


def clean_name(text: str) -> str:
    """Strip control characters (NUL padding etc.) and surrounding whitespace"""
    return _CONTROL_CHARACTERS.sub('', text).strip()


# ============================================================================
# Event Demuxer
# ============================================================================

@dataclass
class InstrumentBindings:
    """Channel → instrument assignments shared by every track of one decode

    Attributes:
        channels: Last program seen per channel
        placeholders: Synthetic numbers handed out for unknown instrument names
    """
    channels: Dict[int, int] = field(default_factory=dict)
    placeholders: Dict[str, int] = field(default_factory=dict)

    def copy(self) -> 'InstrumentBindings':
        return InstrumentBindings(dict(self.channels), dict(self.placeholders))

    def instrument_for_name(self, name: str) -> int:
        program = gm_program_for_name(name)
        if program is not None:
            return program
        if name not in self.placeholders:
            self.placeholders[name] = PLACEHOLDER_INSTRUMENT_BASE + len(self.placeholders)
        return self.placeholders[name]


@dataclass
class DemuxResult:
    """Output of demux_track()

    Note and control change times are *nominal*: computed at the header's
    reference tempo. They become real times only after warp_tracks().
    """
    track: Track
    tempo_changes: List[TempoBreakpoint]
    bindings: InstrumentBindings


def is_note_on(msg: Any) -> bool:
    return msg.type == 'note_on' and msg.velocity > 0


def is_note_off(msg: Any) -> bool:
    return msg.type == 'note_off' or (msg.type == 'note_on' and msg.velocity == 0)


def demux_track(
    messages: Sequence[Any],
    header: Header,
    bindings: Optional[InstrumentBindings] = None
) -> DemuxResult:
    """Assemble one raw track's tokens into notes and control changes

    Pure per call: `bindings` is copied, and the updated copy is returned
    for the next track of the same file.

    Note-offs without a pending note-on for the same (pitch, channel) are
    ignored. Pending note-ons are paired first-in, first-out.

    Args:
        messages: One mido track (messages carry delta ticks in .time)
        header: Header with ppq and reference bpm
        bindings: Instrument assignments carried over from earlier tracks

    Returns:
        DemuxResult with the raw track, tempo changes found (in discovery
        order) and the updated bindings
    """
    bindings = bindings.copy() if bindings is not None else InstrumentBindings()
    track = Track()
    tempo_changes = []

    absolute_time = 0.0
    channel = None
    pending: Dict[Tuple[int, int], deque] = {}
    channel_cc: Dict[int, Dict[int, int]] = {}
    pitch_bend_range: Dict[int, int] = {}

    for msg in messages:
        absolute_time += ticks_to_seconds(msg.time, header.ppq, header.bpm)
        msg_channel = getattr(msg, 'channel', None)
        if msg_channel is not None and track.channel_number is None:
            track.channel_number = msg_channel

        if msg.type == 'track_name':
            track.name = clean_name(msg.name)

        elif is_note_on(msg):
            channel = msg.channel
            track.note_on(
                msg.note, absolute_time, msg.velocity / 127,
                channel, bindings.channels.get(channel)
            )
            pending.setdefault((msg.note, channel), deque()).append(len(track.notes) - 1)

        elif is_note_off(msg):
            queue = pending.get((msg.note, msg.channel))
            if not queue:
                logger.debug(
                    "Ignoring unmatched note_off (pitch %d, channel %d) at %.4fs",
                    msg.note, msg.channel, absolute_time
                )
                continue
            index = queue.popleft()
            note = track.notes[index]
            track.notes[index] = replace(note, duration=absolute_time - note.time)

        elif msg.type == 'control_change':
            channel = msg.channel
            state = channel_cc.setdefault(channel, {})
            state[msg.control] = msg.value
            track.cc(msg.control, absolute_time, msg.value / 127,
                     channel, bindings.channels.get(channel))

            if msg.control == DATA_ENTRY_MSB and state.get(RPN_MSB) == 0 and not state.get(RPN_LSB):
                pitch_bend_range[channel] = msg.value
            if msg.control == TRACK_PROGRAM_CONTROLLER and track.instrument_number is None:
                track.patch(msg.value)

        elif msg.type == 'instrument_name':
            instrument = bindings.instrument_for_name(clean_name(msg.name))
            if track.instrument_number is None:
                track.patch(instrument)
            if channel is not None:
                bindings.channels[channel] = instrument

        elif msg.type == 'set_tempo':
            breakpoint = TempoBreakpoint(time=absolute_time, bpm=tempo_to_bpm(msg.tempo))
            tempo_changes.append(breakpoint)

        elif msg.type == 'program_change':
            if track.instrument_number is None:
                track.patch(msg.program)
            channel = msg.channel
            bindings.channels[channel] = msg.program

        elif msg.type == 'pitchwheel':
            channel = msg.channel
            bend_range = pitch_bend_range.get(channel, DEFAULT_PITCH_BEND_RANGE)
            raw = msg.pitch + PITCH_BEND_CENTER
            value = bend_range * (raw - PITCH_BEND_CENTER) / PITCH_BEND_CENTER
            track.cc(PITCH_BEND, absolute_time, value,
                     channel, bindings.channels.get(channel))

    return DemuxResult(track=track, tempo_changes=tempo_changes, bindings=bindings)


# ============================================================================
# Channel/Instrument Splitter
# ============================================================================

def resolve_destination(
    element: Union[Note, ControlChange],
    track: Track
) -> Tuple[Optional[int], int]:
    """Effective (channel, instrument) of an element on a raw track

    Fallback order:
        channel: element's own → raw track's channel
        instrument: element's own → raw track's instrument → 0
    """
    channel = element.channel if element.channel is not None else track.channel_number
    if element.instrument is not None:
        instrument = element.instrument
    elif track.instrument_number is not None:
        instrument = track.instrument_number
    else:
        instrument = 0
    return channel, instrument


def _channel_sort_key(channel: Optional[int]) -> int:
    return -1 if channel is None else channel


def split_track(raw: Track) -> List[Track]:
    """Split a mixed track into one track per (channel, instrument)

    Output tracks inherit the raw track's name and are ordered by channel,
    then instrument. Ids are left unset; decoding assigns them globally.
    Elements are rewritten with their resolved channel and instrument.
    """
    sub_tracks: Dict[Optional[int], Dict[int, Track]] = {}

    def get_sub_track(channel, instrument):
        by_instrument = sub_tracks.setdefault(channel, {})
        if instrument not in by_instrument:
            by_instrument[instrument] = Track(
                name=raw.name,
                instrument_number=instrument,
                channel_number=channel
            )
        return by_instrument[instrument]

    for note in raw.notes:
        channel, instrument = resolve_destination(note, raw)
        get_sub_track(channel, instrument).notes.append(
            replace(note, channel=channel, instrument=instrument)
        )

    for controller_id, changes in raw.control_changes.items():
        for change in changes:
            channel, instrument = resolve_destination(change, raw)
            sub_track = get_sub_track(channel, instrument)
            sub_track.control_changes.setdefault(controller_id, []).append(
                replace(change, channel=channel, instrument=instrument)
            )

    return [
        sub_tracks[channel][instrument]
        for channel in sorted(sub_tracks, key=_channel_sort_key)
        for instrument in sorted(sub_tracks[channel])
    ]


# ============================================================================
# Tempo Warp
# ============================================================================

def warp_track(
    track: Track,
    breakpoints: Sequence[TempoBreakpoint],
    reference_bpm: float
) -> Track:
    """Return a copy of `track` with nominal times warped to real times"""
    return replace(
        track,
        notes=apply_tempo_changes(track.notes, breakpoints, reference_bpm),
        control_changes={
            controller_id: apply_tempo_changes(changes, breakpoints, reference_bpm)
            for controller_id, changes in track.control_changes.items()
        }
    )


def warp_tracks(
    tracks: Sequence[Track],
    breakpoints: Sequence[TempoBreakpoint],
    reference_bpm: float
) -> List[Track]:
    """Warp every track; a no-op (shallow copy of the list) without breakpoints"""
    if not breakpoints:
        return list(tracks)
    return [warp_track(track, breakpoints, reference_bpm) for track in tracks]


# ============================================================================
# High-Level Orchestration (Pure)
# ============================================================================

def process_midi_data_to_midi(
    tracks: Sequence[Any],
    ticks_per_beat: int,
    format_type: int = 1
) -> Midi:
    """Process MIDI track data into a Midi

    Takes already-loaded mido tracks, returns the semantic model with real
    elapsed times.

    Args:
        tracks: List of mido Track objects (already loaded)
        ticks_per_beat: MIDI ticks per quarter note
        format_type: SMF format type

    Returns:
        Midi with split, id-numbered, tempo-warped tracks
    """
    header = parse_header(tracks, ticks_per_beat, format_type)

    breakpoints: List[TempoBreakpoint] = []
    bindings = InstrumentBindings()
    raw_tracks = []

    for messages in tracks:
        result = demux_track(messages, header, bindings)
        bindings = result.bindings
        merge_tempo_breakpoints(breakpoints, result.tempo_changes)
        raw_tracks.append(result.track)

        # An otherwise empty named track is taken to be the title track
        if header.name is None and result.track.is_empty and result.track.name:
            header.name = result.track.name

    split_tracks = []
    for raw in raw_tracks:
        split_tracks.extend(split_track(raw))
    for track_id, track in enumerate(split_tracks):
        track.id = track_id

    logger.debug(
        "Demuxed %d raw tracks into %d tracks, %d tempo changes",
        len(raw_tracks), len(split_tracks), len(breakpoints)
    )

    return Midi(header=header, tracks=warp_tracks(split_tracks, breakpoints, header.bpm))


# ============================================================================
# Slicing and Track Access
# ============================================================================

def slice_track(track: Track, start_time: float, end_time: float) -> Track:
    """Keep elements starting in [start_time, end_time), clipping durations

    Times are not rebased: a note at 2.5s stays at 2.5s.
    """
    notes = []
    for note in track.notes:
        if not (start_time <= note.time < end_time):
            continue
        if note.duration is not None and note.time + note.duration > end_time:
            note = replace(note, duration=end_time - note.time)
        notes.append(note)

    control_changes = {}
    for controller_id, changes in track.control_changes.items():
        kept = [change for change in changes if start_time <= change.time < end_time]
        if kept:
            control_changes[controller_id] = kept

    return replace(track, notes=notes, control_changes=control_changes)


def slice_midi(
    midi: Midi,
    start_time: float = 0.0,
    end_time: Optional[float] = None
) -> Midi:
    """Return a new Midi restricted to [start_time, end_time)

    Without `end_time` the window runs open-ended, so elements at the very
    end of the song are kept. The source is not modified.
    """
    if end_time is None:
        end_time = float('inf')
    return Midi(
        header=replace(midi.header),
        tracks=[slice_track(track, start_time, end_time) for track in midi.tracks]
    )


def add_track(midi: Midi, name: Optional[str] = None) -> Track:
    """Append a new empty track and return it"""
    track = Track(name=name, id=len(midi.tracks))
    midi.tracks.append(track)
    return track


def find_track(midi: Midi, index_or_name: Union[int, str]) -> Optional[Track]:
    """Get a track by position or by name

    Returns:
        The track, or None if there is no such index/name
    """
    if isinstance(index_or_name, int) and not isinstance(index_or_name, bool):
        if 0 <= index_or_name < len(midi.tracks):
            return midi.tracks[index_or_name]
        return None
    return next((track for track in midi.tracks if track.name == index_or_name), None)


# ============================================================================
# Encoding
# ============================================================================

# Order of simultaneous events: metadata, program, releases, controllers, attacks
_EVENT_PRIORITY = {
    'program_change': 1,
    'note_off': 2,
    'control_change': 3,
    'pitchwheel': 3,
    'note_on': 4,
}
# Release of a note whose on and off land on the same tick
_ZERO_LENGTH_OFF_PRIORITY = 5


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def _encode_channel(channel: Optional[int], track: Track) -> int:
    if channel is not None and 0 <= channel <= 15:
        return channel
    if track.channel_number is not None and 0 <= track.channel_number <= 15:
        return track.channel_number
    return 0


def track_to_events(track: Track, header: Header) -> List[Tuple[int, Any]]:
    """Convert a track's notes and control changes to (absolute_tick, message) pairs

    Seconds are converted at the header's single reference tempo; tempo
    curves of the original file are not reconstructed.
    """
    events = []

    def to_ticks(seconds):
        return max(0, seconds_to_ticks(seconds, header.ppq, header.bpm))

    if track.instrument_number is not None and 0 <= track.instrument_number <= 127:
        channel = _encode_channel(None, track)
        events.append((0, None, mido.Message('program_change', channel=channel,
                                             program=track.instrument_number)))

    for note in track.notes:
        channel = _encode_channel(note.channel, track)
        velocity = _clamp(int(round(note.velocity * 127)), 1, 127)
        on_tick = to_ticks(note.time)
        off_tick = to_ticks(note.note_off)
        # A zero-tick note must still be released after its own attack
        off_priority = _ZERO_LENGTH_OFF_PRIORITY if off_tick == on_tick else None
        events.append((on_tick, None, mido.Message(
            'note_on', channel=channel, note=note.pitch, velocity=velocity)))
        events.append((off_tick, off_priority, mido.Message(
            'note_off', channel=channel, note=note.pitch, velocity=0)))

    for controller_id, changes in track.control_changes.items():
        for change in changes:
            channel = _encode_channel(change.channel, track)
            if controller_id == PITCH_BEND:
                pitch = int(round(change.value / DEFAULT_PITCH_BEND_RANGE * PITCH_BEND_CENTER))
                msg = mido.Message('pitchwheel', channel=channel,
                                   pitch=_clamp(pitch, -PITCH_BEND_CENTER, PITCH_BEND_CENTER - 1))
            else:
                msg = mido.Message('control_change', channel=channel, control=int(controller_id),
                                   value=_clamp(int(round(change.value * 127)), 0, 127))
            events.append((to_ticks(change.time), None, msg))

    def sort_key(event):
        tick, priority, msg = event
        if priority is None:
            priority = _EVENT_PRIORITY.get(msg.type, 0)
        return tick, priority

    events.sort(key=sort_key)
    return [(tick, msg) for tick, _, msg in events]


def events_to_track(
    events: Sequence[Tuple[int, Any]],
    name: Optional[str] = None,
    meta: Sequence[Any] = ()
) -> mido.MidiTrack:
    """Build a mido track from absolute-tick events

    `meta` messages and the track name are placed at tick 0, before the
    events. Absolute ticks are converted to deltas.
    """
    midi_track = mido.MidiTrack()
    for msg in meta:
        midi_track.append(msg.copy(time=0))
    if name:
        midi_track.append(mido.MetaMessage('track_name', name=name, time=0))

    last_tick = 0
    for tick, msg in events:
        midi_track.append(msg.copy(time=tick - last_tick))
        last_tick = tick

    midi_track.append(mido.MetaMessage('end_of_track', time=0))
    return midi_track


def _track_order(track: Track) -> float:
    # Tracks without an id keep their list position, after numbered ones
    return float('inf') if track.id is None else track.id


def encode_tracks(midi: Midi) -> List[mido.MidiTrack]:
    """Convert a Midi into mido tracks ready to be written

    Every track is encoded at the header's reference tempo. If the header
    carries a name that the first empty track does not already hold, a
    leading title track is added. The first written track also carries the
    time signature.
    """
    header = midi.header
    tempo = mido.MetaMessage('set_tempo', tempo=bpm_to_tempo(header.bpm))
    numerator, denominator = header.time_signature
    time_signature = mido.MetaMessage('time_signature', numerator=numerator,
                                      denominator=denominator)

    midi_tracks = []
    first_empty = next((track for track in midi.tracks if not track.length), None)
    if header.name and not (first_empty and first_empty.name == header.name):
        midi_tracks.append(events_to_track([], name=header.name))

    for track in sorted(midi.tracks, key=_track_order):
        midi_tracks.append(events_to_track(
            track_to_events(track, header),
            name=track.name,
            meta=[tempo]
        ))

    if midi_tracks:
        midi_tracks[0].insert(0, time_signature)
    return midi_tracks
