from __future__ import annotations

import functools
from tkinter import StringVar, TclError
from typing import Callable, Optional

import customtkinter as ctk

from qr_attendance.config.settings import settings
from qr_attendance.models import AttendanceRecord
from qr_attendance.services import AttendanceService, QRScanner, ScanSessionStateMachine, ScanSnapshot, ScanState
from qr_attendance.services.location import HttpLocationSource, StaticLocationSource
from qr_attendance.ui.theme import (
    TONE_COLORS,
    VS_ACCENT,
    VS_ACCENT_HOVER,
    VS_CARD,
    VS_DIVIDER,
    VS_SUCCESS,
    VS_SURFACE,
    VS_TEXT,
    VS_TEXT_MUTED,
    VS_WARNING,
)

_STATE_TONES = {
    ScanState.SUCCESS: "success",
    ScanState.ERROR: "warning",
}

_BORDER_COLORS = {
    ScanState.SCANNING: VS_ACCENT,
    ScanState.SUBMITTING: VS_ACCENT_HOVER,
    ScanState.SUCCESS: VS_SUCCESS,
    ScanState.ERROR: VS_WARNING,
}


def build_location_source():
    if settings.location_endpoint:
        return HttpLocationSource(settings.location_endpoint, timeout=settings.location_timeout_seconds)
    return StaticLocationSource(None, error_message="No location provider is configured on this device.")


class ScanDialog(ctk.CTkToplevel):
    """Student-facing dialog that scans the teacher's QR code and checks in."""

    def __init__(
        self,
        master,
        service: AttendanceService,
        *,
        session_id: int,
        student_id: str,
        on_success: Optional[Callable[[AttendanceRecord], None]] = None,
    ) -> None:
        super().__init__(master, fg_color=VS_SURFACE)
        self.title("Scan attendance QR code")
        self.geometry("460x340")
        self.resizable(False, False)

        self._status_var = StringVar(value="Locating you…")
        self._location_var = StringVar(value="Location: acquiring")

        precheck = None
        session_result = service.get_session(session_id)
        if session_result.ok and session_result.value.geofence_enabled:
            session = session_result.value
            precheck = functools.partial(service.evaluate_geofence, session.anchor, session.radius_meters)

        self._machine = ScanSessionStateMachine(
            camera=QRScanner(camera_index=settings.qr_camera_index),
            location_source=build_location_source(),
            submit=functools.partial(service.verify_attendance, session_id, student_id),
            precheck=precheck,
            dispatch=self._dispatch,
            schedule=self._schedule,
            on_change=self._render,
            on_success=on_success,
            on_close=self._close_window,
            success_close_delay=settings.success_close_delay_seconds,
            error_reset_delay=settings.error_reset_delay_seconds,
        )

        self._build_widgets()
        self.protocol("WM_DELETE_WINDOW", self._machine.close)
        self._machine.open()
        self._render(self._machine.snapshot)

    def _build_widgets(self) -> None:
        self.grid_columnconfigure(0, weight=1)

        self._card = ctk.CTkFrame(self, corner_radius=16, fg_color=VS_CARD, border_width=3, border_color=VS_DIVIDER)
        self._card.grid(row=0, column=0, padx=20, pady=(20, 12), sticky="nsew")
        self._card.grid_columnconfigure(0, weight=1)

        self._status_label = ctk.CTkLabel(
            self._card,
            textvariable=self._status_var,
            font=ctk.CTkFont(size=17),
            text_color=VS_TEXT,
            wraplength=380,
            justify="center",
        )
        self._status_label.grid(row=0, column=0, padx=16, pady=(24, 8), sticky="ew")

        ctk.CTkLabel(
            self._card,
            textvariable=self._location_var,
            font=ctk.CTkFont(size=13),
            text_color=VS_TEXT_MUTED,
        ).grid(row=1, column=0, padx=16, pady=(0, 24), sticky="ew")

        buttons = ctk.CTkFrame(self, fg_color="transparent")
        buttons.grid(row=1, column=0, padx=20, pady=(0, 20), sticky="ew")
        buttons.grid_columnconfigure((0, 1, 2), weight=1)

        self._start_button = ctk.CTkButton(
            buttons,
            text="Start scanning",
            command=self._machine.start,
            fg_color=VS_ACCENT,
            hover_color=VS_ACCENT_HOVER,
        )
        self._start_button.grid(row=0, column=0, padx=4, sticky="ew")

        self._retry_button = ctk.CTkButton(buttons, text="Retry camera", command=self._machine.retry_camera)
        self._retry_button.grid(row=0, column=1, padx=4, sticky="ew")

        ctk.CTkButton(buttons, text="Close", command=self._machine.close, fg_color=VS_DIVIDER).grid(
            row=0, column=2, padx=4, sticky="ew"
        )

    def _render(self, snapshot: ScanSnapshot) -> None:
        if not self.winfo_exists():
            return

        message = snapshot.message
        if snapshot.state is ScanState.IDLE and not message:
            message = "Press Start scanning when you can see the teacher's QR code."
        self._status_var.set(message)
        self._status_label.configure(text_color=TONE_COLORS.get(_STATE_TONES.get(snapshot.state, "info")))
        self._card.configure(border_color=_BORDER_COLORS.get(snapshot.state, VS_DIVIDER))
        location_text = snapshot.location_status.value
        if snapshot.location is not None:
            location_text += f" ({snapshot.location.lat:.5f}, {snapshot.location.lng:.5f})"
        self._location_var.set(f"Location: {location_text}")

        self._start_button.configure(state="normal" if snapshot.can_start else "disabled")
        self._retry_button.configure(state="normal" if snapshot.can_retry_camera else "disabled")

    def _dispatch(self, fn: Callable[[], None]) -> None:
        try:
            self.after(0, fn)
        except TclError:  # pragma: no cover - window already gone
            pass

    def _schedule(self, delay: float, fn: Callable[[], None]) -> Callable[[], None]:
        job = self.after(int(delay * 1000), fn)

        def _cancel() -> None:
            try:
                self.after_cancel(job)
            except TclError:  # pragma: no cover - job already fired
                pass

        return _cancel

    def _close_window(self) -> None:
        if self.winfo_exists():
            super().destroy()

    def destroy(self) -> None:  # pragma: no cover - lifecycle hook
        if not self._machine.closed:
            self._machine.close()
            return
        super().destroy()
