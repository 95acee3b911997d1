"""
Tests for the MIDI ⇄ JSON command-line converter
"""

import json

import pytest
from midi_convert import main, default_output_path, is_url
from midi_core import add_track
from midi_shell import save_midi_file, load_midi_file
from midi_types import Header, Midi


@pytest.fixture
def midi_path(tmp_path):
    midi = Midi(header=Header(ppq=480, bpm=120.0))
    track = add_track(midi, 'Piano')
    track.add_note(60, 0.0, 1.0, velocity=0.5)
    track.add_note(67, 2.0, 1.0, velocity=0.5)
    return save_midi_file(midi, tmp_path / 'song.mid')


class TestPaths:

    def test_default_output_path(self):
        assert default_output_path('song.mid', True).name == 'song.json'
        assert default_output_path('song.json', False).name == 'song.mid'
        assert default_output_path('https://example.com/a/tune.mid', True).name == 'tune.json'

    def test_is_url(self):
        assert is_url('http://example.com/x.mid')
        assert not is_url('x.mid')


class TestMain:
    """Test command-line conversions on temporary files"""

    def test_midi_to_json(self, midi_path, capsys):
        assert main([str(midi_path)]) == 0

        output = midi_path.with_suffix('.json')
        record = json.loads(output.read_text())
        assert len(record['tracks']) == 1
        assert [n['pitch'] for n in record['tracks'][0]['notes']] == [60, 67]
        assert 'Wrote' in capsys.readouterr().out

    def test_json_to_midi(self, midi_path, tmp_path):
        json_path = tmp_path / 'song.json'
        main([str(midi_path), '-o', str(json_path)])

        out_path = tmp_path / 'copy.mid'
        assert main([str(json_path), '-o', str(out_path)]) == 0

        midi = load_midi_file(out_path)
        assert [n.pitch for n in midi.tracks[0].notes] == [60, 67]

    def test_bpm_and_slice(self, midi_path, tmp_path):
        json_path = tmp_path / 'fast.json'

        assert main([str(midi_path), '-o', str(json_path),
                     '--bpm', '240', '--start', '0.5']) == 0

        record = json.loads(json_path.read_text())
        assert record['header']['bpm'] == 240.0
        notes = record['tracks'][0]['notes']
        assert [n['pitch'] for n in notes] == [67]
        assert notes[0]['time'] == pytest.approx(1.0)

    def test_missing_file(self, tmp_path, capsys):
        assert main([str(tmp_path / 'missing.mid')]) == 1
        assert 'ERROR' in capsys.readouterr().out

    def test_invalid_record(self, tmp_path, capsys):
        bad = tmp_path / 'bad.json'
        bad.write_text(json.dumps({'header': {'ppq': 0}, 'tracks': []}))

        assert main([str(bad)]) == 1
        assert 'Invalid record' in capsys.readouterr().out

    def test_invalid_midi(self, tmp_path):
        bad = tmp_path / 'bad.mid'
        bad.write_bytes(b'not midi')

        assert main([str(bad)]) == 1
