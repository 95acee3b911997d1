"""
MIDI Shell - Imperative Shell

Handles bytes, files and network I/O for MIDI decoding/encoding.
Tokenizing and serializing Standard MIDI File bytes is delegated to mido;
everything in between is done by the pure functions in midi_core.py.

This is the "shell" that wraps the functional "core".
"""

import io
import logging
import urllib.error
import urllib.request
from pathlib import Path
from typing import Optional, Union

import mido  # type: ignore

from midi_types import Midi
from midi_core import process_midi_data_to_midi, encode_tracks

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT = 30.0


# ============================================================================
# Errors
# ============================================================================

class MalformedStreamError(ValueError):
    """The byte stream could not be tokenized as a Standard MIDI File"""


class TransportError(IOError):
    """Raw bytes could not be fetched

    Attributes:
        address: URL that was requested
        status: HTTP status code, None for network-level failures
    """

    def __init__(self, message: str, address: str, status: Optional[int] = None):
        super().__init__(message)
        self.address = address
        self.status = status


# mido reports truncated or invalid data through several exception types
_CODEC_ERRORS = (OSError, EOFError, ValueError, KeyError, IndexError)


# ============================================================================
# Bytes (Imperative Shell around mido)
# ============================================================================

def read_midi_bytes(data: bytes) -> mido.MidiFile:
    """Tokenize raw Standard MIDI File bytes

    Raises:
        MalformedStreamError: If mido cannot parse the bytes
    """
    try:
        return mido.MidiFile(file=io.BytesIO(bytes(data)))
    except _CODEC_ERRORS as e:
        raise MalformedStreamError(f"Failed to parse MIDI data: {e}") from e


def decode(data: bytes) -> Midi:
    """Decode raw MIDI bytes into a Midi with real-time tracks

    Raises:
        MalformedStreamError: If the bytes are not a valid MIDI file.
            No partial result is returned.
    """
    midi_file = read_midi_bytes(data)

    midi = process_midi_data_to_midi(
        tracks=midi_file.tracks,
        ticks_per_beat=midi_file.ticks_per_beat,
        format_type=midi_file.type
    )
    logger.debug("Decoded %d bytes into %d tracks", len(data), len(midi.tracks))
    return midi


def encode(midi: Midi) -> bytes:
    """Encode a Midi into Standard MIDI File bytes

    All tracks are written at the header's single reference tempo.
    """
    midi_file = mido.MidiFile(type=1, ticks_per_beat=midi.header.ppq)
    midi_file.tracks.extend(encode_tracks(midi))

    buffer = io.BytesIO()
    midi_file.save(file=buffer)
    return buffer.getvalue()


# ============================================================================
# File Loading
# ============================================================================

def load_midi_file(midi_path: Union[str, Path]) -> Midi:
    """Load and decode a MIDI file from disk

    Raises:
        FileNotFoundError: If MIDI file doesn't exist
        MalformedStreamError: If the file is not valid MIDI
    """
    path = Path(midi_path)
    if not path.exists():
        raise FileNotFoundError(f"MIDI file not found: {midi_path}")

    return decode(path.read_bytes())


def save_midi_file(midi: Midi, midi_path: Union[str, Path]) -> Path:
    """Encode a Midi and write it to disk

    Returns:
        Path written
    """
    path = Path(midi_path)
    path.write_bytes(encode(midi))
    logger.debug("Wrote %s", path)
    return path


def validate_midi_file(midi_path: Union[str, Path]) -> bool:
    """Check if a file is a valid MIDI file

    Returns:
        True if valid MIDI file, False otherwise
    """
    try:
        load_midi_file(midi_path)
        return True
    except (FileNotFoundError, MalformedStreamError):
        return False


# ============================================================================
# Transport
# ============================================================================

def fetch(address: str, timeout: float = DEFAULT_FETCH_TIMEOUT) -> bytes:
    """Fetch raw bytes from a URL. Never retries.

    Raises:
        TransportError: On a non-2xx status or a network failure
    """
    try:
        with urllib.request.urlopen(address, timeout=timeout) as response:
            status = getattr(response, 'status', 200)
            data = response.read()
    except urllib.error.HTTPError as e:
        raise TransportError(f"Failed to fetch {address}: HTTP {e.code}",
                             address, e.code) from e
    except (urllib.error.URLError, OSError) as e:
        raise TransportError(f"Failed to fetch {address}: {e}", address) from e

    if not (200 <= status < 300):
        raise TransportError(f"Failed to fetch {address}: HTTP {status}", address, status)
    return data


def load_midi_url(address: str, timeout: float = DEFAULT_FETCH_TIMEOUT) -> Midi:
    """Fetch and decode a MIDI file

    Raises:
        TransportError: If fetching fails
        MalformedStreamError: If the fetched bytes are not valid MIDI
    """
    return decode(fetch(address, timeout=timeout))
