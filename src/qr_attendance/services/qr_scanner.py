from __future__ import annotations

import logging
import threading
import time
import unicodedata
from contextlib import suppress
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

SCAN_INTERVAL_SECONDS = 0.08
DEDUP_INTERVAL_SECONDS = 0.8
PREVIEW_INTERVAL_SECONDS = 0.07
PREVIEW_MAX_WIDTH = 480
CAMERA_UNAVAILABLE_MESSAGE = (
    "Unable to access the camera. Allow camera access and check that no other app is using it."
)


def _decode_symbol_data(raw: bytes | str) -> str:
    if not raw:
        return ""

    if isinstance(raw, str):
        decoded = raw
    else:
        try:
            decoded = raw.decode("utf-8")
        except UnicodeDecodeError:
            decoded = raw.decode("utf-8", errors="ignore")

    normalized = unicodedata.normalize("NFC", decoded)
    return normalized.strip()


class QRScanner:
    """Camera source that decodes QR payloads on a background thread.

    ``on_ready`` fires once the capture device opened; ``on_error`` fires when it
    could not be opened, which is how a refused camera permission surfaces.
    Repeats of the same payload inside ``DEDUP_INTERVAL_SECONDS`` are dropped.
    """

    def __init__(self, camera_index: int = 0) -> None:
        self._camera_index = camera_index
        self._running = False
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    def start(
        self,
        on_payload: Callable[[str], None],
        *,
        on_ready: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        on_frame: Optional[Callable[[Any], None]] = None,
    ) -> bool:
        """Start the background scanner loop."""

        with self._lock:
            if self._running:
                return True

            try:
                import cv2  # type: ignore[import-not-found]
                import zxingcpp  # type: ignore[import-not-found]
            except ImportError:
                if on_error:
                    on_error(
                        "Missing QR scanner dependencies. Install OpenCV (cv2) and zxing-cpp to enable scanning."
                    )
                return False

            self._stop_event.clear()

            def _runner() -> None:
                self._run_loop(on_payload, on_ready, on_error, on_frame, cv2, zxingcpp)

            self._thread = threading.Thread(target=_runner, daemon=True)
            self._running = True
            self._thread.start()
            return True

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._stop_event.set()

        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=1.5)
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _run_loop(
        self,
        on_payload: Callable[[str], None],
        on_ready: Optional[Callable[[], None]],
        on_error: Optional[Callable[[str], None]],
        on_frame: Optional[Callable[[Any], None]],
        cv2_module,
        zxing_module,
    ) -> None:
        capture = None
        last_payload: Optional[str] = None
        last_timestamp: float = 0.0
        last_preview: float = 0.0

        try:
            capture = self._open_capture(cv2_module)
            if capture is None:
                logger.warning("Camera %s could not be opened", self._camera_index)
                if on_error and not self._stop_event.is_set():
                    on_error(CAMERA_UNAVAILABLE_MESSAGE)
                return

            if on_ready and not self._stop_event.is_set():
                on_ready()

            while not self._stop_event.is_set():
                ok, frame = capture.read()
                if not ok:
                    time.sleep(SCAN_INTERVAL_SECONDS)
                    continue

                with suppress(Exception):
                    frame = cv2_module.flip(frame, 1)

                now = time.time()

                if on_frame and (now - last_preview) >= PREVIEW_INTERVAL_SECONDS:
                    preview_frame = frame
                    if PREVIEW_MAX_WIDTH and preview_frame.shape[1] > PREVIEW_MAX_WIDTH:
                        scale = PREVIEW_MAX_WIDTH / float(preview_frame.shape[1])
                        height = int(preview_frame.shape[0] * scale)
                        preview_frame = cv2_module.resize(preview_frame, (PREVIEW_MAX_WIDTH, height))
                    on_frame(preview_frame.copy())
                    last_preview = now

                try:
                    decoded = zxing_module.read_barcodes(
                        frame,
                        formats=zxing_module.BarcodeFormat.QRCode,
                        try_rotate=True,
                        try_downscale=True,
                    )
                except Exception:  # pragma: no cover - decoder faults on odd frames
                    logger.debug("QR decode failed on a frame", exc_info=True)
                    decoded = []

                for obj in decoded:
                    if hasattr(obj, "valid") and not obj.valid:
                        continue

                    payload = _decode_symbol_data(getattr(obj, "text", ""))
                    if not payload:
                        payload_bytes = getattr(obj, "bytes", b"") or b""
                        if not isinstance(payload_bytes, (bytes, bytearray)):
                            payload_bytes = bytes(payload_bytes)
                        payload = _decode_symbol_data(payload_bytes)
                    if not payload:
                        continue

                    if last_payload == payload and (now - last_timestamp) < DEDUP_INTERVAL_SECONDS:
                        continue

                    last_payload = payload
                    last_timestamp = now
                    if self._stop_event.is_set():
                        break
                    on_payload(payload)

                time.sleep(SCAN_INTERVAL_SECONDS)
        except Exception:  # pragma: no cover - device faults
            logger.exception("QR scanner loop crashed")
            if on_error and not self._stop_event.is_set():
                on_error(CAMERA_UNAVAILABLE_MESSAGE)
        finally:
            if capture is not None:
                with suppress(Exception):
                    capture.release()
            with self._lock:
                self._running = False

    def _open_capture(self, cv2_module):
        backend_preferences = [getattr(cv2_module, "CAP_DSHOW", None), getattr(cv2_module, "CAP_ANY", None)]

        for backend in backend_preferences:
            if backend is None:
                capture = cv2_module.VideoCapture(self._camera_index)
            else:
                capture = cv2_module.VideoCapture(self._camera_index, backend)

            if capture.isOpened():
                return capture

            capture.release()

        return None
