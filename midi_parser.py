"""
MIDI Parser - Public API

Re-exports the stable surface from midi_shell.py (I/O), midi_core.py
(pure transformations) and midi_types.py (model and records), so callers
only need one import.
"""

# Shell functions (bytes, files, network)
from midi_shell import (
    decode,
    encode,
    load_midi_file,
    save_midi_file,
    load_midi_url,
    fetch,
    validate_midi_file,
    MalformedStreamError,
    TransportError,
)

# Pure functions
from midi_core import (
    slice_midi as slice,
    add_track,
    find_track,
)

# Model and serialization mirror
from midi_types import (
    Midi,
    Header,
    Track,
    Note,
    ControlChange,
    PITCH_BEND,
    to_record,
    from_record,
)

ParseError = MalformedStreamError

__all__ = [
    # Shell functions
    'decode',
    'encode',
    'load_midi_file',
    'save_midi_file',
    'load_midi_url',
    'fetch',
    'validate_midi_file',
    'MalformedStreamError',
    'ParseError',
    'TransportError',
    # Core functions
    'slice',
    'add_track',
    'find_track',
    # Types
    'Midi',
    'Header',
    'Track',
    'Note',
    'ControlChange',
    'PITCH_BEND',
    'to_record',
    'from_record',
]
