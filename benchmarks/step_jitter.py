"""Step clock jitter benchmark.

Runs the playback clock for a number of bars and measures how far each step
tick lands from its ideal time (start + n step intervals).  Voices are silent
so only the scheduler is measured.

Usage:
    python benchmarks/step_jitter.py [--bpm BPM] [--bars N]

Options:
    --bpm BPM           Tempo in BPM, 60-200 (default: 120)
    --bars N            Number of bars to measure (default: 8)
"""

import argparse
import asyncio
import logging
import statistics
import time
import typing

# Keep the engine quiet so the report is readable.
logging.basicConfig(level=logging.ERROR)

import thrashtracker.clock
import thrashtracker.constants
import thrashtracker.pattern_store
import thrashtracker.synth
import thrashtracker.voice_allocator


class _SilentBackend:

	"""Every voice is a ``SilentVoice``."""

	def create (self, kind: thrashtracker.synth.SynthKind, track: int, params: thrashtracker.synth.VoiceParams) -> thrashtracker.synth.SilentVoice:

		return thrashtracker.synth.SilentVoice("benchmark")

	async def load_sample (self, track: int, params: thrashtracker.synth.SamplerParams) -> thrashtracker.synth.SilentVoice:

		return thrashtracker.synth.SilentVoice("benchmark")

	def close (self) -> None:

		pass


def _run_benchmark (bpm: float, bars: int) -> typing.List[float]:

	"""Play ``bars`` bars of a full grid and return per-step jitter in seconds."""

	steps = bars * thrashtracker.constants.NUM_STEPS
	interval = thrashtracker.clock.step_interval_ms(bpm) / 1000.0
	tick_times: typing.List[float] = []

	async def _run () -> None:

		store = thrashtracker.pattern_store.PatternStore()

		for track in range(thrashtracker.constants.NUM_TRACKS):
			for step in range(thrashtracker.constants.NUM_STEPS):
				store.toggle_step(thrashtracker.constants.DEFAULT_PATTERN_ID, track, step)

		allocator = thrashtracker.voice_allocator.VoiceAllocator()
		allocator.initialize(_SilentBackend())

		clock = thrashtracker.clock.PlaybackClock(store, allocator, bpm=bpm)
		done = asyncio.Event()

		def _on_step (step: int, pattern_id: str) -> None:

			tick_times.append(time.perf_counter())

			if len(tick_times) >= steps:
				done.set()

		clock.events.on("step", _on_step)

		started = time.perf_counter()
		await clock.start()
		await done.wait()
		await clock.stop()

		tick_times.insert(0, started)

	asyncio.run(_run())

	started = tick_times[0]

	return [abs(t - (started + (n + 1) * interval)) for n, t in enumerate(tick_times[1:steps + 1])]


def _print_report (jitter: typing.List[float], bpm: float, bars: int) -> None:

	if not jitter:
		print("No jitter data collected.")
		return

	ms = sorted(j * 1000 for j in jitter)

	print(f"\nStep Jitter Benchmark - {bars} bars at {bpm:.0f} BPM")
	print(f"{'-' * 52}")
	print(f"  Steps measured  : {len(ms)}")
	print(f"  Step interval   : {thrashtracker.clock.step_interval_ms(bpm):.3f} ms")
	print(f"{'-' * 52}")
	print(f"  Mean jitter     : {statistics.mean(ms):>8.3f} ms")
	print(f"  Median jitter   : {statistics.median(ms):>8.3f} ms")
	print(f"  P95 jitter      : {ms[int(len(ms) * 0.95)]:>8.3f} ms")
	print(f"  Max jitter      : {ms[-1]:>8.3f} ms")
	print()


def main () -> None:

	parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
	parser.add_argument("--bpm", type=float, default=120, help="Tempo in BPM (default: 120)")
	parser.add_argument("--bars", type=int, default=8, help="Bars to measure (default: 8)")
	args = parser.parse_args()

	try:
		thrashtracker.clock.validate_bpm(args.bpm)
	except ValueError as e:
		parser.error(str(e))

	_print_report(_run_benchmark(args.bpm, args.bars), args.bpm, args.bars)


if __name__ == "__main__":
	main()
