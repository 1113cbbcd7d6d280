import logging
import typing
import mido

logger = logging.getLogger(__name__)


def list_input_names() -> typing.List[str]:
    """
    Return the names of the MIDI inputs currently visible to the backend.

    Backend errors (no MIDI subsystem, driver hiccups) are logged and reported
    as an empty list so callers can treat them as "no device".
    """
    try:
        return list(mido.get_input_names())
    except Exception as e:
        logger.error(f"Failed to list MIDI inputs: {e}")
        return []


def select_output_device(device_name: typing.Optional[str] = None) -> typing.Tuple[typing.Optional[str], typing.Optional[typing.Any]]:
    """
    Select and open a MIDI output device.

    If `device_name` is provided, attempts to open that specific device.
    If `device_name` is None, the first available output is used.
    If no devices exist, logs a warning and returns None - the engine keeps
    running silently, since audio output is optional for step editing.

    Returns:
        A tuple of (device_name, midi_out_object) or (None, None) on failure.
    """
    try:
        outputs = mido.get_output_names()
        logger.info(f"Available MIDI outputs: {outputs}")

        if not outputs:
            logger.warning("No MIDI output devices found.")
            return None, None

        if device_name is None:
            device_name = outputs[0]
            logger.info(f"Using first MIDI output: '{device_name}'")

        elif device_name not in outputs:
            logger.error(
                f"MIDI output device '{device_name}' not found. "
                f"Available devices: {outputs}"
            )
            return None, None

        midi_out = mido.open_output(device_name)
        logger.info(f"Opened MIDI output: {device_name}")
        return device_name, midi_out

    except Exception as e:
        logger.error(f"Failed to open MIDI output: {e}")
        return None, None


def select_input_device(device_name: typing.Optional[str] = None, callback: typing.Optional[typing.Callable] = None) -> typing.Tuple[typing.Optional[str], typing.Optional[typing.Any]]:
    """
    Select and open a MIDI input device.

    If `device_name` is None the first discovered input wins.  If a name is
    given but not found, this falls back to the first available input and
    logs a warning, which keeps a config file portable across machines.

    `callback` is called from mido's input thread for every message.

    Returns:
        A tuple of (device_name, midi_in_object) or (None, None) when no
        input is available.
    """
    inputs = list_input_names()
    logger.info(f"Available MIDI inputs: {inputs}")

    if not inputs:
        return None, None

    target = device_name

    if target is None:
        target = inputs[0]

    elif target not in inputs:
        logger.warning(f"MIDI input device '{target}' not found.")
        target = inputs[0]
        logger.warning(f"Fallback to: {target}")

    try:
        midi_in = mido.open_input(target, callback=callback)
        logger.info(f"Opened MIDI input: {target}")
        return target, midi_in

    except Exception as e:
        logger.error(f"Failed to open MIDI input: {e}")
        return None, None
