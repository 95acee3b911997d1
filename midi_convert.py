#!/usr/bin/env python3
"""
MIDI ⇄ JSON Converter

Decodes a Standard MIDI File into a JSON record of tracks, notes and
control changes timed in seconds, or encodes such a record back into a
MIDI file.

Usage:
    python midi_convert.py song.mid                  # writes song.json
    python midi_convert.py song.json -o out.mid      # JSON back to MIDI
    python midi_convert.py https://host/song.mid -o song.json
    python midi_convert.py song.mid --bpm 90 --start 4 --end 12
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from midi_types import Midi, to_record, from_record
from midi_core import slice_midi
from midi_shell import (
    load_midi_file,
    load_midi_url,
    save_midi_file,
    MalformedStreamError,
    TransportError,
)


def is_url(source: str) -> bool:
    return source.startswith(('http://', 'https://'))


def default_output_path(source: str, to_json: bool) -> Path:
    """song.mid → song.json, song.json → song.mid (URLs use their last path segment)"""
    name = source.rstrip('/').rsplit('/', 1)[-1] if is_url(source) else source
    return Path(name).with_suffix('.json' if to_json else '.mid')


def load_source(source: str) -> Midi:
    """Load a Midi from a .json record, a MIDI file or a URL"""
    if is_url(source):
        return load_midi_url(source)
    path = Path(source)
    if path.suffix.lower() == '.json':
        with open(path) as f:
            return from_record(json.load(f))
    return load_midi_file(path)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Convert MIDI files to JSON performance records and back'
    )
    parser.add_argument('source', help='MIDI file, JSON record or http(s) URL')
    parser.add_argument('-o', '--output', type=str, default=None,
                        help='Output path (.json or .mid); default swaps the extension')
    parser.add_argument('--bpm', type=float, default=None,
                        help='Change the reference tempo, stretching all timings')
    parser.add_argument('--start', type=float, default=None,
                        help='Keep only events starting at or after this time (seconds)')
    parser.add_argument('--end', type=float, default=None,
                        help='Keep only events starting before this time (seconds)')
    parser.add_argument('--indent', type=int, default=2,
                        help='JSON indentation (default: 2)')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    source_is_json = not is_url(args.source) and args.source.lower().endswith('.json')
    output = Path(args.output) if args.output else default_output_path(args.source, not source_is_json)

    try:
        midi = load_source(args.source)
    except FileNotFoundError as e:
        print(f"ERROR: {e}")
        return 1
    except TransportError as e:
        print(f"ERROR: Could not download {args.source}: {e}")
        return 1
    except MalformedStreamError as e:
        print(f"ERROR: {e}")
        return 1
    except ValueError as e:
        print(f"ERROR: Invalid record {args.source}: {e}")
        return 1

    print(f"Loaded {args.source}: {len(midi.tracks)} tracks, duration {midi.duration:.2f}s")

    if args.bpm is not None:
        print(f"Rescaling tempo {midi.bpm:.2f} → {args.bpm:.2f} BPM")
        midi.bpm = args.bpm

    if args.start is not None or args.end is not None:
        midi = slice_midi(midi, args.start or 0.0, args.end)
        print(f"Sliced to {sum(t.length for t in midi.tracks)} notes")

    if output.suffix.lower() == '.json':
        with open(output, 'w') as f:
            json.dump(to_record(midi), f, indent=args.indent)
    else:
        save_midi_file(midi, output)

    print(f"Wrote {output}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
