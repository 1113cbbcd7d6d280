import asyncio
import inspect
import logging
import typing


logger = logging.getLogger(__name__)

CallbackType = typing.Callable[..., typing.Any]


class EventEmitter:

	"""
	Named events for UI collaborators, with sync and async listeners.

	A listener that raises is logged and skipped; the remaining listeners still
	run and the emitter never propagates the error to the engine.

	Events emitted by the engine:

	- ``start`` (bpm), ``stop`` ()
	- ``step`` (step, pattern_id) after each tick's notes are triggered
	- ``bpm`` (bpm)
	- ``pattern_change`` (pattern_id)
	- ``connected`` (device_name), ``disconnected`` (device_name)
	"""

	def __init__ (self) -> None:

		self._listeners: typing.Dict[str, typing.List[CallbackType]] = {}
		self._tasks: typing.Set[asyncio.Task] = set()

	def on (self, event_name: str, callback: CallbackType) -> None:

		"""
		Register a callback for an event name.
		"""

		self._listeners.setdefault(event_name, []).append(callback)

	def off (self, event_name: str, callback: CallbackType) -> None:

		"""
		Unregister a previously registered callback.

		Raises ``ValueError`` if the callback is not registered for the event.
		"""

		if callback not in self._listeners.get(event_name, []):
			raise ValueError(f"Callback not registered for event {event_name!r}")

		self._listeners[event_name].remove(callback)

	def emit (self, event_name: str, *args: typing.Any) -> None:

		"""Call every listener for ``event_name`` now.

		Async listeners are scheduled as tasks on the running loop; outside a
		loop they are skipped with a warning.
		"""

		for callback in list(self._listeners.get(event_name, [])):

			try:

				if inspect.iscoroutinefunction(callback):

					try:
						loop = asyncio.get_running_loop()
					except RuntimeError:
						logger.warning(f"Async listener for {event_name!r} skipped: no running event loop")
						continue

					task = loop.create_task(self._run_async(event_name, callback, *args))
					self._tasks.add(task)
					task.add_done_callback(self._tasks.discard)

				else:
					callback(*args)

			except Exception:
				logger.exception(f"Listener for {event_name!r} failed")

	async def _run_async (self, event_name: str, callback: CallbackType, *args: typing.Any) -> None:

		try:
			await callback(*args)
		except Exception:
			logger.exception(f"Listener for {event_name!r} failed")
