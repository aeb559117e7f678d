from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Mapping, Optional

import requests

from qr_attendance.models import GeoPoint

logger = logging.getLogger(__name__)

DEFAULT_WATCH_INTERVAL_SECONDS = 30.0


class LocationUnavailable(RuntimeError):
    """Raised when a location provider cannot produce a usable fix."""


def parse_location_payload(payload: Mapping[str, Any]) -> GeoPoint:
    """Extract a coordinate from the common geolocation API response shapes.

    Accepts ``{"lat", "lng"}``, ``{"latitude", "longitude"}``, ``{"lat", "lon"}``
    and ipinfo-style ``{"loc": "lat,lng"}``.
    """
    try:
        if "loc" in payload and isinstance(payload["loc"], str):
            lat_raw, lng_raw = payload["loc"].split(",", 1)
            point = GeoPoint(lat=float(lat_raw), lng=float(lng_raw))
        elif "latitude" in payload:
            point = GeoPoint(lat=float(payload["latitude"]), lng=float(payload["longitude"]))
        else:
            lng_value = payload["lng"] if "lng" in payload else payload["lon"]
            point = GeoPoint(lat=float(payload["lat"]), lng=float(lng_value))
    except (KeyError, TypeError, ValueError) as exc:
        raise LocationUnavailable("Location service returned an unreadable position.") from exc

    if not point.is_valid():
        raise LocationUnavailable("Location service returned an out-of-range position.")
    return point


class StaticLocationSource:
    """Reports a fixed position, or a fixed failure when no position is known."""

    def __init__(self, point: Optional[GeoPoint], *, error_message: str = "Location permission denied.") -> None:
        self._point = point
        self._error_message = error_message
        self._running = False

    def start(self, on_fix: Callable[[GeoPoint], None], on_error: Callable[[str], None]) -> None:
        self._running = True
        if self._point is None:
            on_error(self._error_message)
        else:
            on_fix(self._point)

    def stop(self) -> None:
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running


class HttpLocationSource:
    """Polls an HTTP geolocation endpoint on a background thread."""

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 5.0,
        watch_interval: Optional[float] = DEFAULT_WATCH_INTERVAL_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._endpoint = endpoint
        self._timeout = timeout
        self._watch_interval = watch_interval
        self._session = session or requests.Session()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    def fetch(self) -> GeoPoint:
        try:
            response = self._session.get(self._endpoint, timeout=self._timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.Timeout as exc:
            raise LocationUnavailable("Timed out while determining your location.") from exc
        except (requests.RequestException, ValueError) as exc:
            raise LocationUnavailable(f"Unable to determine your location: {exc}") from exc

        if not isinstance(payload, Mapping):
            raise LocationUnavailable("Location service returned an unreadable position.")
        return parse_location_payload(payload)

    def start(self, on_fix: Callable[[GeoPoint], None], on_error: Callable[[str], None]) -> None:
        with self._lock:
            if self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set():
                return
            # Each run owns its stop event; a stopped thread stays stopped.
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run, args=(on_fix, on_error, self._stop_event), daemon=True
            )
            self._thread.start()

    def stop(self) -> None:
        """Signal the polling thread and return without waiting for an in-flight request."""
        with self._lock:
            self._stop_event.set()
            self._thread = None

    def _run(
        self,
        on_fix: Callable[[GeoPoint], None],
        on_error: Callable[[str], None],
        stop_event: threading.Event,
    ) -> None:
        while not stop_event.is_set():
            try:
                point = self.fetch()
            except LocationUnavailable as exc:
                logger.info("Location lookup failed: %s", exc)
                if not stop_event.is_set():
                    on_error(str(exc))
            else:
                if not stop_event.is_set():
                    on_fix(point)

            if self._watch_interval is None:
                return
            stop_event.wait(self._watch_interval)
