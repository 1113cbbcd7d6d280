import argparse
import asyncio
import logging
import signal
import typing

import thrashtracker.clock
import thrashtracker.config
import thrashtracker.transport


logger = logging.getLogger(__name__)


def write_demo_pattern (transport: thrashtracker.transport.Transport) -> None:

	"""
	Four-on-the-floor kick, backbeat snare and offbeat hats in the current pattern.
	"""

	for step in range(0, 16, 4):
		transport.toggle_step(0, step)
		transport.set_step_note(0, step, 36)

	for step in (4, 12):
		transport.toggle_step(1, step)
		transport.set_step_note(1, step, 38)

	for step in range(2, 16, 4):
		transport.toggle_step(2, step)
		transport.set_step_note(2, step, 42)


async def run_until_stopped (transport: thrashtracker.transport.Transport, bpm: typing.Optional[float] = None) -> None:

	"""
	Play until SIGINT or SIGTERM, then shut everything down cleanly.
	"""

	stop_event = asyncio.Event()
	loop = asyncio.get_running_loop()

	def _request_stop () -> None:

		"""
		Signal handler to request a clean shutdown.
		"""

		stop_event.set()

	for sig in (signal.SIGINT, signal.SIGTERM):
		loop.add_signal_handler(sig, _request_stop)

	def _log_pattern (pattern_id: str) -> None:

		logger.info(f"Now playing {pattern_id}")

	transport.on_pattern_change = _log_pattern

	async with transport:

		await transport.start(bpm)

		state = transport.state
		logger.info(
			f"Playing {state.current_pattern_id} at {state.bpm} BPM "
			f"(MIDI input: {'connected' if transport.midi_connected else 'none'}). Press Ctrl+C to stop."
		)

		await stop_event.wait()


def main () -> None:

	"""
	Command-line entry point: ``python -m thrashtracker``.
	"""

	parser = argparse.ArgumentParser(description="ThrashTracker step sequencer")
	parser.add_argument("--config", default=thrashtracker.config.DEFAULT_CONFIG_PATH, help=f"YAML settings file (default: {thrashtracker.config.DEFAULT_CONFIG_PATH})")
	parser.add_argument("--bpm", type=float, default=None, help="Tempo, 60-200 (overrides the config file)")
	parser.add_argument("--demo", action="store_true", help="Start with a simple drum pattern in the current pattern")
	args = parser.parse_args()

	config = thrashtracker.config.load_config(args.config)

	logging.basicConfig(level=config.log_level)

	if args.bpm is not None:
		try:
			thrashtracker.clock.validate_bpm(args.bpm)
		except ValueError as e:
			parser.error(str(e))

	transport = thrashtracker.transport.Transport(config)

	if args.demo:
		write_demo_pattern(transport)

	try:
		asyncio.run(run_until_stopped(transport, args.bpm))

	except KeyboardInterrupt:
		pass


if __name__ == '__main__':
	main()
