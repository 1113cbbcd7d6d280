import dataclasses
import logging
import os
import typing

import yaml

import thrashtracker.clock
import thrashtracker.constants
import thrashtracker.errors
import thrashtracker.pattern

from thrashtracker.synth import SynthKind


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "thrashtracker.yaml"


@dataclasses.dataclass
class Config:

	"""
	Runtime settings, usually read from a YAML file by ``load_config()``.

	Example file::

		sequencer:
		  bpm: 128
		  pattern: "000x01"
		midi:
		  input_device: null      # first available
		  output_device: null     # first available
		  pattern_cc: 20          # null = any controller selects patterns
		  note_duration_ms: 500
		  queue_size: 256
		  poll_interval: 1.0      # null disables hot-plug scanning
		  channels: [0, 1, 2, 3, 4, 5, 6, 7]
		tracks:
		  kinds: [percussive, percussive, fm, fm, subtractive, subtractive, fm, sampler]
		logging:
		  level: INFO
	"""

	bpm: float = thrashtracker.constants.DEFAULT_BPM
	pattern: str = thrashtracker.constants.DEFAULT_PATTERN_ID
	input_device: typing.Optional[str] = None
	output_device: typing.Optional[str] = None
	pattern_cc: typing.Optional[int] = None
	note_duration_ms: float = thrashtracker.constants.MIDI_NOTE_DURATION_MS
	queue_size: int = 256
	poll_interval: typing.Optional[float] = 1.0
	channels: typing.List[int] = dataclasses.field(default_factory=lambda: list(range(thrashtracker.constants.NUM_TRACKS)))
	track_kinds: typing.List[SynthKind] = dataclasses.field(default_factory=lambda: [SynthKind.FM] * thrashtracker.constants.NUM_TRACKS)
	log_level: str = "INFO"

	def __post_init__ (self) -> None:

		thrashtracker.clock.validate_bpm(self.bpm)

		try:
			self.pattern = thrashtracker.pattern.normalize_pattern_id(self.pattern)
		except thrashtracker.errors.PatternNotFound as e:
			raise thrashtracker.errors.InvalidArgument(str(e)) from None

		if self.pattern_cc is not None and not 0 <= self.pattern_cc <= 127:
			raise thrashtracker.errors.InvalidArgument(f"midi.pattern_cc must be 0-127, got {self.pattern_cc}")

		if self.note_duration_ms <= 0:
			raise thrashtracker.errors.InvalidArgument("midi.note_duration_ms must be positive")

		if self.queue_size <= 0:
			raise thrashtracker.errors.InvalidArgument("midi.queue_size must be positive")

		if self.poll_interval is not None and self.poll_interval <= 0:
			raise thrashtracker.errors.InvalidArgument("midi.poll_interval must be positive or null")

		if len(self.channels) != thrashtracker.constants.NUM_TRACKS or not all(0 <= c <= 15 for c in self.channels):
			raise thrashtracker.errors.InvalidArgument("midi.channels must list one channel (0-15) per track")

		if len(self.track_kinds) != thrashtracker.constants.NUM_TRACKS:
			raise thrashtracker.errors.InvalidArgument(f"tracks.kinds must list {thrashtracker.constants.NUM_TRACKS} kinds")

		try:
			self.track_kinds = [SynthKind.parse(kind) for kind in self.track_kinds]
		except ValueError as e:
			raise thrashtracker.errors.InvalidArgument(str(e)) from None

		self.log_level = str(self.log_level).upper()

		if not isinstance(logging.getLevelName(self.log_level), int):
			raise thrashtracker.errors.InvalidArgument(f"Unknown logging level {self.log_level!r}")

	@classmethod
	def from_dict (cls, data: typing.Optional[typing.Dict[str, typing.Any]]) -> "Config":

		"""Build a config from the nested structure of the YAML file. Missing keys keep their defaults."""

		data = data or {}

		sequencer = data.get('sequencer') or {}
		midi = data.get('midi') or {}
		tracks = data.get('tracks') or {}
		log = data.get('logging') or {}

		kwargs: typing.Dict[str, typing.Any] = {}

		for key, section, name in (
			('bpm', sequencer, 'bpm'),
			('pattern', sequencer, 'pattern'),
			('input_device', midi, 'input_device'),
			('output_device', midi, 'output_device'),
			('pattern_cc', midi, 'pattern_cc'),
			('note_duration_ms', midi, 'note_duration_ms'),
			('queue_size', midi, 'queue_size'),
			('poll_interval', midi, 'poll_interval'),
			('channels', midi, 'channels'),
			('track_kinds', tracks, 'kinds'),
			('log_level', log, 'level'),
		):
			if name in section:
				kwargs[key] = section[name]

		return cls(**kwargs)


def load_config (config_path: str = DEFAULT_CONFIG_PATH) -> Config:

	"""
	Load configuration from a YAML file. A missing file gives the defaults.
	"""

	if not os.path.exists(config_path):
		logger.warning(f"Config file {config_path} not found. Using defaults.")
		return Config()

	with open(config_path, 'r') as f:
		data = yaml.safe_load(f)

	if data is not None and not isinstance(data, dict):
		raise thrashtracker.errors.InvalidArgument(f"{config_path} must contain a mapping at the top level")

	return Config.from_dict(data)
