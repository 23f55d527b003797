"""Background worker and the message protocol spoken across its boundary.

Requests and responses are plain dicts so any transport can carry them:

* request ``{"model", "backend", "factor", "width", "height", "input"}``
* progress ``{"progress": float, "info": str}``
* success ``{"progress": 100, "done": True, "output": bytearray, "info": str, "backend": str}``
* failure ``{"alertmsg": str}``, plus ``"cancelled": True`` when the job was cancelled

Pixel data is handed over rather than copied: the worker takes ownership of
``input`` and gives up ``output`` once the ``done`` message is sent.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from PIL import Image

from .buffer import PixelBuffer
from .errors import UpscaleCancelled, UpscaleError
from .pipeline import Done, Failed, Progress, UpscaleOrchestrator, UpscalingEvent, UpscalingOptions

logger = logging.getLogger(__name__)

Message = Dict[str, Any]
MessageSink = Callable[[Message], None]


@dataclass
class UpscaleRequest:
    options: UpscalingOptions
    width: int
    height: int
    input: bytearray

    @classmethod
    def from_message(cls, message: Mapping[str, Any]) -> "UpscaleRequest":
        missing = [key for key in ("width", "height", "input") if key not in message]
        if missing:
            raise ValueError(f"Upscale request is missing {', '.join(missing)}.")
        options = UpscalingOptions(
            model=message.get("model", UpscalingOptions.model),
            backend=message.get("backend", UpscalingOptions.backend),
            factor=int(message.get("factor") or UpscalingOptions.factor),
        )
        return cls(
            options=options,
            width=int(message["width"]),
            height=int(message["height"]),
            input=message["input"],
        )

    def to_message(self) -> Message:
        return {
            "model": self.options.model.value,
            "backend": self.options.backend.value,
            "factor": self.options.factor,
            "width": self.width,
            "height": self.height,
            "input": self.input,
        }

    def source(self) -> PixelBuffer:
        return PixelBuffer(self.width, self.height, self.input)


def event_to_message(event: UpscalingEvent) -> Message:
    if isinstance(event, Progress):
        return {"progress": event.percent, "info": event.message}
    if isinstance(event, Done):
        return {
            "progress": 100,
            "done": True,
            "output": event.output.data,
            "info": event.message,
            "backend": event.backend,
        }
    message: Message = {"alertmsg": event.message}
    if isinstance(event, Failed) and isinstance(event.error, UpscaleCancelled):
        message["cancelled"] = True
    return message


_STOP = object()


class UpscaleWorker:
    """Runs upscale jobs one at a time on a dedicated thread.

    Messages for every job are delivered to ``on_message`` from the worker
    thread.
    """

    def __init__(self, orchestrator: UpscaleOrchestrator, on_message: MessageSink) -> None:
        self._orchestrator = orchestrator
        self._on_message = on_message
        self._requests: "queue.Queue[object]" = queue.Queue()
        self._cancel: Optional[threading.Event] = None
        self._cancel_lock = threading.Lock()
        self._thread = threading.Thread(target=self._loop, name="upscale-worker", daemon=True)
        self._thread.start()

    def post(self, message: Mapping[str, Any]) -> None:
        """Queue a request message; ownership of its ``input`` moves to the worker."""

        self._requests.put(dict(message))

    def cancel(self) -> bool:
        """Ask the running job to stop before its next tile."""

        with self._cancel_lock:
            if self._cancel is None:
                return False
            self._cancel.set()
            return True

    def close(self, timeout: Optional[float] = None) -> None:
        self.cancel()
        self._requests.put(_STOP)
        self._thread.join(timeout)

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()

    def _loop(self) -> None:
        while True:
            message = self._requests.get()
            if message is _STOP:
                return
            self._handle(message)

    def _handle(self, message: Any) -> None:
        try:
            request = UpscaleRequest.from_message(message)
            source = request.source()
        except (TypeError, ValueError) as exc:
            logger.warning("Rejected upscale request: %s", exc)
            self._deliver({"alertmsg": f"Invalid upscale request: {exc}"})
            return
        del message

        cancel = threading.Event()
        with self._cancel_lock:
            self._cancel = cancel
        try:
            self._orchestrator.run(
                request.options,
                source,
                lambda event: self._deliver(event_to_message(event)),
                cancel=cancel,
            )
        finally:
            with self._cancel_lock:
                self._cancel = None

    def _deliver(self, message: Message) -> None:
        try:
            self._on_message(message)
        except Exception:
            logger.exception("Message handler failed; dropping %s", sorted(message))


class UpscalingService:
    """Blocking client for :class:`UpscaleWorker` working with Pillow images."""

    def __init__(self, orchestrator: UpscaleOrchestrator) -> None:
        self._responses: "queue.Queue[Message]" = queue.Queue()
        self._worker = UpscaleWorker(orchestrator, self._responses.put)
        self._busy = threading.Lock()

    def upscale_image(
        self,
        image: Image.Image,
        options: UpscalingOptions,
        on_progress: Optional[Callable[[Message], None]] = None,
    ) -> Image.Image:
        with self._busy:
            source = PixelBuffer.from_image(image)
            request = UpscaleRequest(options, source.width, source.height, source.data)
            self._worker.post(request.to_message())
            del source, request

            while True:
                message = self._responses.get()
                if on_progress is not None:
                    on_progress(message)
                if "alertmsg" in message:
                    if message.get("cancelled"):
                        raise UpscaleCancelled(message["alertmsg"])
                    raise UpscaleError(message["alertmsg"])
                if message.get("done"):
                    width = image.width * options.factor
                    height = image.height * options.factor
                    return PixelBuffer(width, height, message["output"]).to_image()

    def cancel(self) -> bool:
        return self._worker.cancel()

    def close(self) -> None:
        self._worker.close()
