"""
MIDI Data Types - Shared Contract

Defines the semantic performance model produced by decoding and consumed by
encoding. All times are real elapsed seconds, not ticks.

Type Hierarchy:
    Midi → Header + [Track]
    Track → [Note] + {controller_id: [ControlChange]}

Notes and control changes are immutable; tracks and the Midi container are
mutable so they can be built up incrementally.
"""

from dataclasses import dataclass, field
from typing import Tuple, List, Dict, Any, Optional, Union

from tempo_core import DEFAULT_BPM, scale_elements

DEFAULT_PPQ = 480
DEFAULT_TIME_SIGNATURE = (4, 4)
DEFAULT_FORMAT_TYPE = 1

# Controller id used for pitch bend in Track.control_changes
PITCH_BEND = 'pitchBend'

# Controller ids are MIDI controller numbers (0-127) or PITCH_BEND
ControllerId = Union[int, str]

NOTE_NAMES = ['C', 'C#', 'D', 'D#', 'E', 'F', 'F#', 'G', 'G#', 'A', 'A#', 'B']


@dataclass(frozen=True)
class Note:
    """A durationed note

    Attributes:
        pitch: MIDI note number (0-127)
        time: Start time in seconds
        velocity: Normalized velocity (0-1)
        duration: Length in seconds, None until the matching note-off is seen
        channel: MIDI channel (0-15), None when unknown
        instrument: Program number, None when unknown
    """
    pitch: int
    time: float
    velocity: float
    duration: Optional[float] = None
    channel: Optional[int] = None
    instrument: Optional[int] = None

    @property
    def name(self) -> str:
        """Scientific pitch name, e.g. 'C4' for 60"""
        return f"{NOTE_NAMES[self.pitch % 12]}{self.pitch // 12 - 1}"

    @property
    def note_off(self) -> float:
        """Release time in seconds"""
        return self.time + (self.duration or 0.0)


@dataclass(frozen=True)
class ControlChange:
    """A controller or pitch bend value at a point in time

    Attributes:
        controller_id: Controller number (0-127) or PITCH_BEND
        time: Time in seconds
        value: 0-1 for controllers, signed semitones for pitch bend
        channel: MIDI channel (0-15), None when unknown
        instrument: Program number, None when unknown
    """
    controller_id: ControllerId
    time: float
    value: float
    channel: Optional[int] = None
    instrument: Optional[int] = None


@dataclass
class Header:
    """File-level metadata

    `bpm` is the reference tempo every track time was computed against.
    Assigning it directly does not retime anything; use Midi.bpm for that.
    """
    ppq: int = DEFAULT_PPQ
    bpm: float = DEFAULT_BPM
    time_signature: Tuple[int, int] = DEFAULT_TIME_SIGNATURE
    format_type: int = DEFAULT_FORMAT_TYPE
    name: Optional[str] = None


@dataclass
class Track:
    """One (channel, instrument) stream of notes and control changes"""
    name: Optional[str] = None
    instrument_number: Optional[int] = None
    channel_number: Optional[int] = None
    id: Optional[int] = None
    notes: List[Note] = field(default_factory=list)
    control_changes: Dict[ControllerId, List[ControlChange]] = field(default_factory=dict)

    def note_on(
        self,
        pitch: int,
        time: float,
        velocity: float,
        channel: Optional[int] = None,
        instrument: Optional[int] = None
    ) -> Note:
        """Append a note without duration and return it"""
        note = Note(pitch=pitch, time=time, velocity=velocity,
                    channel=channel, instrument=instrument)
        self.notes.append(note)
        return note

    def add_note(
        self,
        pitch: int,
        time: float,
        duration: float,
        velocity: float = 1.0
    ) -> Note:
        """Append a complete note on this track's channel/instrument"""
        note = Note(pitch=pitch, time=time, velocity=velocity, duration=duration,
                    channel=self.channel_number, instrument=self.instrument_number)
        self.notes.append(note)
        return note

    def cc(
        self,
        controller_id: ControllerId,
        time: float,
        value: float,
        channel: Optional[int] = None,
        instrument: Optional[int] = None
    ) -> ControlChange:
        """Append a control change to its controller's sequence"""
        change = ControlChange(controller_id=controller_id, time=time, value=value,
                               channel=channel, instrument=instrument)
        self.control_changes.setdefault(controller_id, []).append(change)
        return change

    def patch(self, instrument_number: int) -> None:
        self.instrument_number = instrument_number

    def scale(self, ratio: float) -> None:
        """Multiply every time and duration by `ratio` (in place)"""
        self.notes = scale_elements(self.notes, ratio)
        self.control_changes = {
            controller_id: scale_elements(changes, ratio)
            for controller_id, changes in self.control_changes.items()
        }

    @property
    def length(self) -> int:
        return len(self.notes)

    @property
    def is_empty(self) -> bool:
        """True when the track carries no notes and no control changes"""
        return not self.notes and not any(self.control_changes.values())

    @property
    def start_time(self) -> float:
        """Earliest note start, 0 if there are no notes"""
        return min((note.time for note in self.notes), default=0.0)

    @property
    def duration(self) -> float:
        """Latest note release or control change time, 0 if empty"""
        ends = [note.note_off for note in self.notes]
        for changes in self.control_changes.values():
            ends.extend(change.time for change in changes)
        return max(ends, default=0.0)

    @property
    def instrument(self) -> Optional[str]:
        """General MIDI instrument name, None for unknown programs"""
        if self.instrument_number is None or not (0 <= self.instrument_number <= 127):
            return None
        return GM_INSTRUMENT_NAMES[self.instrument_number]

    @property
    def instrument_family(self) -> Optional[str]:
        if self.instrument_number is None or not (0 <= self.instrument_number <= 127):
            return None
        return GM_INSTRUMENT_FAMILIES[self.instrument_number // 8]


@dataclass
class Midi:
    """Complete decoded performance: header plus tracks"""
    header: Header = field(default_factory=Header)
    tracks: List[Track] = field(default_factory=list)

    @property
    def start_time(self) -> float:
        """Earliest note start across all tracks, 0 if there are none"""
        starts = [track.start_time for track in self.tracks if track.notes]
        return min(starts, default=0.0)

    @property
    def duration(self) -> float:
        """End of the longest track, 0 if there are no tracks"""
        return max((track.duration for track in self.tracks), default=0.0)

    @property
    def bpm(self) -> float:
        return self.header.bpm

    @bpm.setter
    def bpm(self, bpm: float) -> None:
        """Change the reference tempo, stretching every track accordingly"""
        if bpm <= 0:
            raise ValueError(f"BPM {bpm} must be positive")
        ratio = self.header.bpm / bpm
        self.header.bpm = bpm
        for track in self.tracks:
            track.scale(ratio)

    @property
    def time_signature(self) -> Tuple[int, int]:
        return self.header.time_signature

    @time_signature.setter
    def time_signature(self, time_signature: Tuple[int, int]) -> None:
        self.header.time_signature = tuple(time_signature)


# ============================================================================
# Record Conversion
# ============================================================================
#
# Records are plain dicts/lists safe for json.dumps. Unknown channels and
# instruments are written as -1.

def _to_optional(value: Optional[int]) -> int:
    return -1 if value is None else value


def _from_optional(value: Optional[int]) -> Optional[int]:
    return None if value is None or value == -1 else value


def _controller_key(key: Any) -> ControllerId:
    """JSON turns integer dict keys into strings; undo that"""
    if isinstance(key, str) and key.isdigit():
        return int(key)
    return key


def note_to_dict(note: Note) -> Dict[str, Any]:
    return {
        'pitch': note.pitch,
        'name': note.name,
        'time': note.time,
        'duration': note.duration,
        'velocity': note.velocity,
        'channel': _to_optional(note.channel),
        'instrument': _to_optional(note.instrument),
    }


def dict_to_note(data: Dict[str, Any]) -> Note:
    return Note(
        pitch=data['pitch'],
        time=data['time'],
        velocity=data.get('velocity', 1.0),
        duration=data.get('duration'),
        channel=_from_optional(data.get('channel')),
        instrument=_from_optional(data.get('instrument'))
    )


def control_change_to_dict(change: ControlChange) -> Dict[str, Any]:
    return {
        'controller_id': change.controller_id,
        'time': change.time,
        'value': change.value,
        'channel': _to_optional(change.channel),
        'instrument': _to_optional(change.instrument),
    }


def dict_to_control_change(data: Dict[str, Any]) -> ControlChange:
    return ControlChange(
        controller_id=_controller_key(data['controller_id']),
        time=data['time'],
        value=data['value'],
        channel=_from_optional(data.get('channel')),
        instrument=_from_optional(data.get('instrument'))
    )


def track_to_dict(track: Track) -> Dict[str, Any]:
    return {
        'id': track.id,
        'name': track.name,
        'channel_number': _to_optional(track.channel_number),
        'instrument_number': _to_optional(track.instrument_number),
        'instrument': track.instrument,
        'instrument_family': track.instrument_family,
        'start_time': track.start_time,
        'duration': track.duration,
        'notes': [note_to_dict(note) for note in track.notes],
        'control_changes': {
            str(controller_id): [control_change_to_dict(change) for change in changes]
            for controller_id, changes in track.control_changes.items()
        },
    }


def dict_to_track(data: Dict[str, Any]) -> Track:
    return Track(
        name=data.get('name'),
        instrument_number=_from_optional(data.get('instrument_number')),
        channel_number=_from_optional(data.get('channel_number')),
        id=data.get('id'),
        notes=[dict_to_note(note) for note in data.get('notes', [])],
        control_changes={
            _controller_key(key): [dict_to_control_change(change) for change in changes]
            for key, changes in data.get('control_changes', {}).items()
        }
    )


def header_to_dict(header: Header) -> Dict[str, Any]:
    return {
        'name': header.name or '',
        'ppq': header.ppq,
        'bpm': header.bpm,
        'time_signature': list(header.time_signature),
        'format_type': header.format_type,
    }


def dict_to_header(data: Dict[str, Any]) -> Header:
    return Header(
        ppq=data.get('ppq', DEFAULT_PPQ),
        bpm=data.get('bpm', DEFAULT_BPM),
        time_signature=tuple(data.get('time_signature', DEFAULT_TIME_SIGNATURE)),
        format_type=data.get('format_type', DEFAULT_FORMAT_TYPE),
        name=data.get('name') or None
    )


def to_record(midi: Midi) -> Dict[str, Any]:
    """Convert a Midi to a JSON-ready record

    `start_time` and `duration` are included for convenience; they are
    derived values and ignored by from_record().
    """
    return {
        'header': header_to_dict(midi.header),
        'start_time': midi.start_time,
        'duration': midi.duration,
        'tracks': [track_to_dict(track) for track in midi.tracks],
    }


def from_record(record: Dict[str, Any]) -> Midi:
    """Rebuild a Midi from a record produced by to_record()

    Raises:
        ValueError: If the record's header is out of range
    """
    header = dict_to_header(record.get('header', {}))
    validate_header(header)
    return Midi(
        header=header,
        tracks=[dict_to_track(track) for track in record.get('tracks', [])]
    )


# ============================================================================
# Validation Functions
# ============================================================================

def validate_note(note: Note) -> bool:
    """Validate Note fields are within MIDI ranges

    Returns:
        True if valid, raises ValueError if invalid
    """
    if not (0 <= note.pitch <= 127):
        raise ValueError(f"MIDI note {note.pitch} out of range [0, 127]")

    if note.time < 0:
        raise ValueError(f"Note time {note.time} must be non-negative")

    if not (0 <= note.velocity <= 1):
        raise ValueError(f"Velocity {note.velocity} out of range [0, 1]")

    if note.channel is not None and not (0 <= note.channel <= 15):
        raise ValueError(f"Channel {note.channel} out of range [0, 15]")

    if note.duration is not None and note.duration < 0:
        raise ValueError(f"Duration {note.duration} must be non-negative")

    return True


def validate_control_change(change: ControlChange) -> bool:
    """Validate ControlChange fields

    Returns:
        True if valid, raises ValueError if invalid
    """
    if change.controller_id != PITCH_BEND:
        if not isinstance(change.controller_id, int) or not (0 <= change.controller_id <= 127):
            raise ValueError(f"Controller {change.controller_id!r} out of range [0, 127]")
        if not (0 <= change.value <= 1):
            raise ValueError(f"Controller value {change.value} out of range [0, 1]")

    if change.time < 0:
        raise ValueError(f"Control change time {change.time} must be non-negative")

    if change.channel is not None and not (0 <= change.channel <= 15):
        raise ValueError(f"Channel {change.channel} out of range [0, 15]")

    return True


def validate_header(header: Header) -> bool:
    if header.ppq <= 0:
        raise ValueError(f"PPQ {header.ppq} must be positive")

    if header.bpm <= 0:
        raise ValueError(f"BPM {header.bpm} must be positive")

    numerator, denominator = header.time_signature
    if numerator <= 0 or denominator <= 0 or denominator & (denominator - 1):
        raise ValueError(f"Invalid time signature {header.time_signature}")

    return True


# ============================================================================
# General MIDI Instruments
# ============================================================================

GM_INSTRUMENT_FAMILIES: List[str] = [
    'piano', 'chromatic percussion', 'organ', 'guitar',
    'bass', 'strings', 'ensemble', 'brass',
    'reed', 'pipe', 'synth lead', 'synth pad',
    'synth effects', 'ethnic', 'percussive', 'sound effects',
]

GM_INSTRUMENT_NAMES: List[str] = [
    # Piano
    'acoustic grand piano', 'bright acoustic piano', 'electric grand piano', 'honky-tonk piano',
    'electric piano 1', 'electric piano 2', 'harpsichord', 'clavi',
    # Chromatic percussion
    'celesta', 'glockenspiel', 'music box', 'vibraphone',
    'marimba', 'xylophone', 'tubular bells', 'dulcimer',
    # Organ
    'drawbar organ', 'percussive organ', 'rock organ', 'church organ',
    'reed organ', 'accordion', 'harmonica', 'tango accordion',
    # Guitar
    'acoustic guitar (nylon)', 'acoustic guitar (steel)', 'electric guitar (jazz)', 'electric guitar (clean)',
    'electric guitar (muted)', 'overdriven guitar', 'distortion guitar', 'guitar harmonics',
    # Bass
    'acoustic bass', 'electric bass (finger)', 'electric bass (pick)', 'fretless bass',
    'slap bass 1', 'slap bass 2', 'synth bass 1', 'synth bass 2',
    # Strings
    'violin', 'viola', 'cello', 'contrabass',
    'tremolo strings', 'pizzicato strings', 'orchestral harp', 'timpani',
    # Ensemble
    'string ensemble 1', 'string ensemble 2', 'synthstrings 1', 'synthstrings 2',
    'choir aahs', 'voice oohs', 'synth voice', 'orchestra hit',
    # Brass
    'trumpet', 'trombone', 'tuba', 'muted trumpet',
    'french horn', 'brass section', 'synthbrass 1', 'synthbrass 2',
    # Reed
    'soprano sax', 'alto sax', 'tenor sax', 'baritone sax',
    'oboe', 'english horn', 'bassoon', 'clarinet',
    # Pipe
    'piccolo', 'flute', 'recorder', 'pan flute',
    'blown bottle', 'shakuhachi', 'whistle', 'ocarina',
    # Synth lead
    'lead 1 (square)', 'lead 2 (sawtooth)', 'lead 3 (calliope)', 'lead 4 (chiff)',
    'lead 5 (charang)', 'lead 6 (voice)', 'lead 7 (fifths)', 'lead 8 (bass + lead)',
    # Synth pad
    'pad 1 (new age)', 'pad 2 (warm)', 'pad 3 (polysynth)', 'pad 4 (choir)',
    'pad 5 (bowed)', 'pad 6 (metallic)', 'pad 7 (halo)', 'pad 8 (sweep)',
    # Synth effects
    'fx 1 (rain)', 'fx 2 (soundtrack)', 'fx 3 (crystal)', 'fx 4 (atmosphere)',
    'fx 5 (brightness)', 'fx 6 (goblins)', 'fx 7 (echoes)', 'fx 8 (sci-fi)',
    # Ethnic
    'sitar', 'banjo', 'shamisen', 'koto',
    'kalimba', 'bag pipe', 'fiddle', 'shanai',
    # Percussive
    'tinkle bell', 'agogo', 'steel drums', 'woodblock',
    'taiko drum', 'melodic tom', 'synth drum', 'reverse cymbal',
    # Sound effects
    'guitar fret noise', 'breath noise', 'seashore', 'bird tweet',
    'telephone ring', 'helicopter', 'applause', 'gunshot',
]


def gm_program_for_name(name: str) -> Optional[int]:
    """Look up a General MIDI program number by instrument name (case-insensitive)"""
    try:
        return GM_INSTRUMENT_NAMES.index(name.strip().lower())
    except ValueError:
        return None
