"""
ThrashTracker - a grid step sequencer engine for multitimbral synths.

The engine plays a bank of 255 patterns (``000x01`` to ``000xFF``), each a
grid of 8 tracks x 16 sixteenth-note steps.  A playback clock walks the grid
at the current tempo and triggers every active step on that track's voices.
A MIDI controller can play the tracks live (one octave per track, from C2)
and switch patterns with control-change messages.

Each track is bound to one of four kinds of synthesis voice - FM,
subtractive, percussive or sampler - with bounded polyphony: four voices
for the melodic kinds, one for the others, reused round-robin so the oldest
note is stolen when a track runs out.  Voices are opaque handles created by
a back-end; the bundled ``MidiSynthBackend`` plays them as MIDI notes so
any hardware or software instrument can make the sound.

Minimal example:

    ```python
    import asyncio
    import thrashtracker

    async def main ():
        async with thrashtracker.Transport() as transport:
            for step in range(0, 16, 4):
                transport.toggle_step(track=0, step=step)
            transport.set_step_note(track=0, step=0, note=36)
            await transport.start(bpm=120)
            await asyncio.sleep(8)

    asyncio.run(main())
    ```

Package-level exports: ``Transport``, ``Config``, ``load_config``, ``SynthKind``,
``PlaybackState``.
"""

import thrashtracker.clock
import thrashtracker.config
import thrashtracker.synth
import thrashtracker.transport

Transport = thrashtracker.transport.Transport
Config = thrashtracker.config.Config
load_config = thrashtracker.config.load_config
SynthKind = thrashtracker.synth.SynthKind
PlaybackState = thrashtracker.clock.PlaybackState
