"""
Tests for MIDI Types - Data Contract Validation

Tests the performance model, its derived values and record conversion.
"""

import json

import pytest
from midi_types import (
    Note,
    ControlChange,
    Header,
    Track,
    Midi,
    PITCH_BEND,
    to_record,
    from_record,
    validate_note,
    validate_control_change,
    validate_header,
    gm_program_for_name,
    GM_INSTRUMENT_NAMES,
    GM_INSTRUMENT_FAMILIES,
)


# ============================================================================
# Note Tests
# ============================================================================

class TestNote:
    """Test Note dataclass"""

    def test_basic_creation(self):
        note = Note(pitch=60, time=1.5, velocity=0.5, channel=0)

        assert note.pitch == 60
        assert note.time == 1.5
        assert note.velocity == 0.5
        assert note.channel == 0
        assert note.duration is None
        assert note.instrument is None

    def test_immutability(self):
        """Test that Note is immutable"""
        note = Note(pitch=60, time=1.0, velocity=1.0)

        with pytest.raises(AttributeError):
            note.time = 2.0

    def test_name(self):
        assert Note(pitch=60, time=0.0, velocity=1.0).name == 'C4'
        assert Note(pitch=69, time=0.0, velocity=1.0).name == 'A4'
        assert Note(pitch=0, time=0.0, velocity=1.0).name == 'C-1'
        assert Note(pitch=61, time=0.0, velocity=1.0).name == 'C#4'

    def test_note_off(self):
        assert Note(pitch=60, time=1.0, velocity=1.0, duration=0.5).note_off == 1.5
        assert Note(pitch=60, time=1.0, velocity=1.0).note_off == 1.0


class TestNoteValidation:
    """Test Note validation"""

    def test_valid_note(self):
        note = Note(pitch=60, time=1.5, velocity=0.8, duration=0.5, channel=9)
        assert validate_note(note) is True

    def test_pitch_out_of_range(self):
        with pytest.raises(ValueError, match="out of range"):
            validate_note(Note(pitch=128, time=1.0, velocity=1.0))

    def test_negative_time(self):
        with pytest.raises(ValueError, match="non-negative"):
            validate_note(Note(pitch=60, time=-1.0, velocity=1.0))

    def test_velocity_not_normalized(self):
        with pytest.raises(ValueError, match="Velocity"):
            validate_note(Note(pitch=60, time=0.0, velocity=100))

    def test_channel_out_of_range(self):
        with pytest.raises(ValueError, match="Channel"):
            validate_note(Note(pitch=60, time=0.0, velocity=1.0, channel=16))

    def test_negative_duration(self):
        with pytest.raises(ValueError, match="Duration"):
            validate_note(Note(pitch=60, time=0.0, velocity=1.0, duration=-0.1))


class TestControlChangeValidation:
    """Test ControlChange validation"""

    def test_valid_controller(self):
        assert validate_control_change(ControlChange(controller_id=64, time=0.0, value=1.0))

    def test_pitch_bend_may_be_negative(self):
        change = ControlChange(controller_id=PITCH_BEND, time=0.0, value=-1.5)
        assert validate_control_change(change)

    def test_controller_out_of_range(self):
        with pytest.raises(ValueError, match="Controller"):
            validate_control_change(ControlChange(controller_id=130, time=0.0, value=0.5))

    def test_value_out_of_range(self):
        with pytest.raises(ValueError, match="value"):
            validate_control_change(ControlChange(controller_id=7, time=0.0, value=1.5))


class TestHeaderValidation:

    def test_defaults_are_valid(self):
        assert validate_header(Header())

    def test_bad_bpm(self):
        with pytest.raises(ValueError, match="BPM"):
            validate_header(Header(bpm=0))

    def test_bad_time_signature(self):
        with pytest.raises(ValueError, match="time signature"):
            validate_header(Header(time_signature=(3, 3)))


# ============================================================================
# Track Tests
# ============================================================================

class TestTrack:
    """Test Track building and derived values"""

    def test_empty_track(self):
        track = Track()

        assert track.length == 0
        assert track.is_empty
        assert track.start_time == 0.0
        assert track.duration == 0.0

    def test_note_on_and_cc(self):
        track = Track(name='Lead')
        track.note_on(60, 1.0, 0.5, channel=0, instrument=4)
        track.cc(64, 2.0, 1.0, channel=0)
        track.cc(64, 3.0, 0.0, channel=0)

        assert track.length == 1
        assert track.notes[0].instrument == 4
        assert len(track.control_changes[64]) == 2
        assert not track.is_empty

    def test_cc_only_track_is_not_empty(self):
        track = Track()
        track.cc(7, 0.0, 1.0)

        assert track.length == 0
        assert not track.is_empty

    def test_add_note_uses_track_channel(self):
        track = Track(channel_number=3, instrument_number=40)
        note = track.add_note(67, 0.5, 1.0, velocity=0.7)

        assert note.channel == 3
        assert note.instrument == 40
        assert note.duration == 1.0

    def test_start_time_and_duration(self):
        track = Track()
        track.add_note(60, 2.0, 1.0)
        track.add_note(62, 0.5, 0.25)
        track.cc(64, 4.0, 0.0)

        assert track.start_time == 0.5
        assert track.duration == 4.0

    def test_instrument_names(self):
        track = Track()
        assert track.instrument is None
        assert track.instrument_family is None

        track.patch(0)
        assert track.instrument == 'acoustic grand piano'
        assert track.instrument_family == 'piano'

        track.patch(40)
        assert track.instrument == 'violin'
        assert track.instrument_family == 'strings'

        track.patch(130)
        assert track.instrument is None

    def test_scale(self):
        track = Track()
        track.add_note(60, 1.0, 0.5)
        track.cc(PITCH_BEND, 2.0, 0.5)

        track.scale(2.0)

        assert track.notes[0].time == 2.0
        assert track.notes[0].duration == 1.0
        assert track.control_changes[PITCH_BEND][0].time == 4.0


# ============================================================================
# Midi Tests
# ============================================================================

class TestMidi:
    """Test the Midi container"""

    def test_empty_midi(self):
        midi = Midi()

        assert midi.start_time == 0.0
        assert midi.duration == 0.0
        assert midi.bpm == 120.0
        assert midi.time_signature == (4, 4)

    def test_start_time_and_duration(self):
        first = Track()
        first.add_note(60, 1.0, 2.0)
        second = Track()
        second.add_note(62, 0.5, 0.5)
        empty = Track(name='title')

        midi = Midi(tracks=[first, second, empty])

        assert midi.start_time == 0.5
        assert midi.duration == 3.0

    def test_bpm_rescale(self):
        """Doubling the tempo halves every time and duration"""
        track = Track()
        track.add_note(60, 1.0, 0.5)
        track.cc(7, 2.0, 0.5)
        midi = Midi(tracks=[track])

        midi.bpm = 240.0

        assert midi.header.bpm == 240.0
        assert track.notes[0].time == pytest.approx(0.5)
        assert track.notes[0].duration == pytest.approx(0.25)
        assert track.control_changes[7][0].time == pytest.approx(1.0)

    def test_bpm_rescale_inverse(self):
        """Rescaling there and back restores the original timings"""
        track = Track()
        track.add_note(60, 1.3, 0.7)
        track.add_note(64, 2.9, 0.1)
        midi = Midi(header=Header(bpm=97.0), tracks=[track])
        original = list(track.notes)

        midi.bpm = 133.0
        midi.bpm = 97.0

        for before, after in zip(original, track.notes):
            assert after.time == pytest.approx(before.time)
            assert after.duration == pytest.approx(before.duration)

    def test_bpm_must_be_positive(self):
        with pytest.raises(ValueError):
            Midi().bpm = 0

    def test_time_signature_setter(self):
        midi = Midi()
        midi.time_signature = [3, 4]
        assert midi.header.time_signature == (3, 4)


# ============================================================================
# Record Conversion Tests
# ============================================================================

class TestRecords:
    """Test the dict mirror of the model"""

    @pytest.fixture
    def sample_midi(self):
        track = Track(name='Bass', instrument_number=33, channel_number=1, id=0)
        track.note_on(40, 0.0, 0.75, channel=1, instrument=33)
        track.add_note(43, 0.5, 0.25, velocity=0.5)
        track.cc(64, 0.25, 1.0, channel=1, instrument=33)
        track.cc(PITCH_BEND, 0.3, -0.5, channel=1, instrument=33)
        drums = Track(name=None, instrument_number=None, channel_number=9, id=1)
        drums.note_on(36, 1.0, 1.0, channel=9)

        return Midi(
            header=Header(ppq=96, bpm=100.0, time_signature=(3, 4), format_type=1, name='Song'),
            tracks=[track, drums]
        )

    def test_record_shape(self, sample_midi):
        record = to_record(sample_midi)

        assert record['header']['name'] == 'Song'
        assert record['header']['time_signature'] == [3, 4]
        assert record['duration'] == sample_midi.duration
        assert len(record['tracks']) == 2
        assert record['tracks'][0]['instrument'] == 'electric bass (finger)'
        assert record['tracks'][0]['notes'][0]['name'] == 'E2'
        assert record['tracks'][1]['instrument_number'] == -1
        assert record['tracks'][1]['notes'][0]['instrument'] == -1

    def test_json_round_trip_is_lossless(self, sample_midi):
        """to_record → JSON → from_record reproduces the model exactly"""
        record = json.loads(json.dumps(to_record(sample_midi)))

        restored = from_record(record)

        assert restored == sample_midi
        assert PITCH_BEND in restored.tracks[0].control_changes
        assert 64 in restored.tracks[0].control_changes

    def test_invalid_header_rejected(self):
        record = to_record(Midi())
        record['header']['bpm'] = 0

        with pytest.raises(ValueError, match="BPM"):
            from_record(record)

    def test_unnamed_header(self):
        record = to_record(Midi())

        assert record['header']['name'] == ''
        assert from_record(record).header.name is None


class TestGeneralMidi:

    def test_table_sizes(self):
        assert len(GM_INSTRUMENT_NAMES) == 128
        assert len(GM_INSTRUMENT_FAMILIES) == 16

    def test_lookup_by_name(self):
        assert gm_program_for_name('Violin') == 40
        assert gm_program_for_name('  acoustic grand piano ') == 0
        assert gm_program_for_name('gunshot') == 127
        assert gm_program_for_name('kazoo') is None
