import asyncio
import logging

import thrashtracker

logging.basicConfig(level=logging.INFO)

# GM drum notes, sent on channel 10 (index 9) for every track.
KICK = 36
SNARE = 38
CLOSED_HAT = 42
OPEN_HAT = 46

config = thrashtracker.Config(
	bpm = 132,
	channels = [9] * 8,
	track_kinds = ["percussive", "percussive", "percussive", "percussive", "fm", "fm", "fm", "fm"],
)

transport = thrashtracker.Transport(config)

# Pattern 000x01: a straight beat.
for step in (0, 4, 8, 12):
	transport.store.set_step("000x01", 0, step, active=True, note=KICK)

for step in (4, 12):
	transport.store.set_step("000x01", 1, step, active=True, note=SNARE)

for step in range(0, 16, 2):
	transport.store.set_step("000x01", 2, step, active=True, note=CLOSED_HAT, velocity=70)

# Pattern 000x02: a broken beat with an open hat.
for step in (0, 3, 6, 10):
	transport.store.set_step("000x02", 0, step, active=True, note=KICK)

for step in (4, 12, 15):
	transport.store.set_step("000x02", 1, step, active=True, note=SNARE, velocity=110 if step != 15 else 50)

transport.store.set_step("000x02", 3, 14, active=True, note=OPEN_HAT)
transport.store.rename_pattern("000x02", "broken")

transport.events.on("pattern_change", lambda pattern_id: logging.info(f"Switched to {pattern_id}"))


async def main () -> None:

	"""Play the straight beat for four bars, then the broken one until Ctrl+C.

	A controller sending CC value 0 or 1 also switches between the two.
	"""

	async with transport:

		await transport.start()

		bar = 16 * transport.clock.step_interval_ms / 1000.0

		await asyncio.sleep(4 * bar)
		transport.select_pattern("000x02")

		await asyncio.Event().wait()


if __name__ == "__main__":
	try:
		asyncio.run(main())
	except KeyboardInterrupt:
		pass
