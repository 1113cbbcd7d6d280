"""Constants for ThrashTracker.

Grid geometry, tempo limits, the pattern bank range and MIDI defaults shared
by the pattern store, the playback clock and the MIDI input router.
"""

# Grid geometry
NUM_TRACKS = 8
NUM_STEPS = 16

# Tempo (beats per minute)
MIN_BPM = 60
MAX_BPM = 200
DEFAULT_BPM = 120

# One step is a sixteenth note
STEPS_PER_BEAT = 4

# Pattern bank: ids 000x01 .. 000xFF
PATTERN_ID_PREFIX = "000x"
MIN_PATTERN_INDEX = 1
MAX_PATTERN_INDEX = 255
DEFAULT_PATTERN_ID = "000x01"

# MIDI standard ranges
MIN_NOTE = 0
MAX_NOTE = 127
MIN_VELOCITY = 0
MAX_VELOCITY = 127
DEFAULT_VELOCITY = 100

# Tuning reference: A4 (MIDI 69) = 440 Hz
A4_NOTE = 69
A4_FREQUENCY = 440.0

# Pitch used when an active step has no note (C4, middle C)
DEFAULT_HIT_NOTE = 60

# MIDI input routing
TRACK_BASE_NOTE = 36			# C2 plays track 0
NOTES_PER_TRACK = 12			# one octave per track
MIDI_NOTE_DURATION_MS = 500		# live notes self-release after this long

# Voice pools
MELODIC_POLYPHONY = 4
MONOPHONIC = 1
