from __future__ import annotations

from datetime import datetime
from tkinter import StringVar
from typing import Callable, Optional

import customtkinter as ctk

from qr_attendance.services import AttendanceService, Result
from qr_attendance.services.token_issuer import render_qr_image
from qr_attendance.ui.theme import (
    TONE_COLORS,
    VS_ACCENT,
    VS_ACCENT_HOVER,
    VS_BG,
    VS_CARD,
    VS_DANGER,
    VS_DANGER_HOVER,
    VS_SURFACE_ALT,
    VS_TEXT,
    VS_TEXT_MUTED,
    VS_WARNING,
)
from qr_attendance.utils import format_countdown, format_relative_time, seconds_remaining

COUNTDOWN_INTERVAL_MS = 1000
QR_PREVIEW_SIZE = (300, 300)
LOW_TIME_SECONDS = 60


class TokenView(ctk.CTkFrame):
    """Teacher panel: shows the live QR code, rotates it and sweeps absences."""

    def __init__(
        self,
        master,
        service: AttendanceService,
        *,
        on_records_changed: Optional[Callable[[], None]] = None,
    ) -> None:
        super().__init__(master, fg_color=VS_BG)
        self._service = service
        self._on_records_changed = on_records_changed

        self.session_id_var = StringVar()
        self.teacher_id_var = StringVar()
        self._status_var = StringVar(value="Enter a session and your teacher ID to display a code.")
        self._countdown_var = StringVar(value="--:--")

        self._expires_at: datetime | None = None
        self._countdown_job: str | None = None
        self._qr_image: ctk.CTkImage | None = None

        self._build_widgets()

    def _build_widgets(self) -> None:
        self.grid_columnconfigure(0, weight=1)
        header_font = ctk.CTkFont(size=20, weight="bold")

        form = ctk.CTkFrame(self, fg_color=VS_SURFACE_ALT, corner_radius=12)
        form.grid(row=0, column=0, padx=20, pady=(20, 12), sticky="ew")
        form.grid_columnconfigure((1, 3), weight=1)

        ctk.CTkLabel(form, text="Session", text_color=VS_TEXT).grid(row=0, column=0, padx=(16, 8), pady=12)
        ctk.CTkEntry(form, textvariable=self.session_id_var, width=90).grid(row=0, column=1, pady=12, sticky="ew")
        ctk.CTkLabel(form, text="Teacher ID", text_color=VS_TEXT).grid(row=0, column=2, padx=(16, 8), pady=12)
        ctk.CTkEntry(form, textvariable=self.teacher_id_var).grid(row=0, column=3, padx=(0, 16), pady=12, sticky="ew")

        card = ctk.CTkFrame(self, fg_color=VS_CARD, corner_radius=16)
        card.grid(row=1, column=0, padx=20, pady=(0, 12), sticky="nsew")
        card.grid_columnconfigure(0, weight=1)

        ctk.CTkLabel(card, text="Attendance QR code", font=header_font, text_color=VS_TEXT).grid(
            row=0, column=0, pady=(18, 8)
        )

        self._qr_label = ctk.CTkLabel(card, text="No code issued", text_color=VS_TEXT_MUTED, width=300, height=300)
        self._qr_label.grid(row=1, column=0, padx=16, pady=8)

        self._countdown_label = ctk.CTkLabel(
            card,
            textvariable=self._countdown_var,
            font=ctk.CTkFont(size=22, weight="bold", family="Courier"),
            text_color=VS_TEXT,
        )
        self._countdown_label.grid(row=2, column=0, pady=(4, 12))

        buttons = ctk.CTkFrame(card, fg_color="transparent")
        buttons.grid(row=3, column=0, pady=(0, 18))

        ctk.CTkButton(
            buttons,
            text="Generate new code",
            command=self._handle_issue,
            fg_color=VS_ACCENT,
            hover_color=VS_ACCENT_HOVER,
        ).grid(row=0, column=0, padx=6)
        ctk.CTkButton(
            buttons,
            text="Mark missing as absent",
            command=self._handle_sweep,
            fg_color=VS_DANGER,
            hover_color=VS_DANGER_HOVER,
        ).grid(row=0, column=1, padx=6)

        self._status_label = ctk.CTkLabel(
            self, textvariable=self._status_var, text_color=VS_TEXT_MUTED, wraplength=520, justify="left"
        )
        self._status_label.grid(row=2, column=0, padx=24, pady=(0, 8), sticky="w")

        self._records_box = ctk.CTkTextbox(self, height=160)
        self._records_box.grid(row=3, column=0, padx=20, pady=(0, 20), sticky="nsew")
        self._records_box.configure(state="disabled")

    def _set_status(self, message: str, tone: str = "info") -> None:
        self._status_var.set(message)
        self._status_label.configure(text_color=TONE_COLORS.get(tone, VS_TEXT_MUTED))

    def _read_form(self) -> tuple[int, str] | None:
        raw_session = self.session_id_var.get().strip()
        teacher_id = self.teacher_id_var.get().strip()
        try:
            session_id = int(raw_session)
        except ValueError:
            self._set_status("Session must be a number.", tone="warning")
            return None
        if not teacher_id:
            self._set_status("Teacher ID is required.", tone="warning")
            return None
        return session_id, teacher_id

    def _report(self, result: Result) -> bool:
        if result.ok:
            return True
        self._set_status(result.message, tone="warning")
        return False

    def _handle_issue(self) -> None:
        form = self._read_form()
        if form is None:
            return
        session_id, teacher_id = form

        result = self._service.issue_token(session_id, requested_by=teacher_id)
        if not self._report(result):
            return

        issued = result.value
        image = render_qr_image(issued.token).get_image().convert("RGB")
        self._qr_image = ctk.CTkImage(light_image=image, dark_image=image, size=QR_PREVIEW_SIZE)
        self._qr_label.configure(image=self._qr_image, text="")
        self._expires_at = issued.expires_at
        self._set_status("New code issued. The previous code no longer works.", tone="success")
        self._schedule_countdown()
        self.refresh_records()

    def _handle_sweep(self) -> None:
        form = self._read_form()
        if form is None:
            return
        session_id, teacher_id = form

        result = self._service.sweep_absent(session_id, teacher_id)
        if not self._report(result):
            return
        self._set_status(f"Marked {result.value} student(s) absent.", tone="success")
        self.refresh_records()
        if self._on_records_changed:
            self._on_records_changed()

    def refresh_records(self) -> None:
        try:
            session_id = int(self.session_id_var.get().strip())
        except ValueError:
            return

        result = self._service.session_records(session_id)
        if not result.ok:
            return

        lines = [
            f"{record.student_id:<14} {record.status.value:<8} {record.scan_method.value:<7} "
            f"{format_relative_time(record.marked_at)}"
            for record in result.value
        ]
        self._records_box.configure(state="normal")
        self._records_box.delete("1.0", "end")
        self._records_box.insert("1.0", "\n".join(lines) or "No attendance recorded yet.")
        self._records_box.configure(state="disabled")

    def _schedule_countdown(self) -> None:
        self._cancel_countdown()
        self._tick_countdown()

    def _tick_countdown(self) -> None:
        self._countdown_job = None
        if self._expires_at is None:
            return

        remaining = seconds_remaining(self._expires_at)
        self._countdown_var.set(f"{format_countdown(remaining)} remaining")
        self._countdown_label.configure(text_color=VS_WARNING if remaining <= LOW_TIME_SECONDS else VS_TEXT)
        if remaining <= 0:
            self._set_status("This code has expired. Generate a new one.", tone="warning")
            return
        self._countdown_job = self.after(COUNTDOWN_INTERVAL_MS, self._tick_countdown)

    def _cancel_countdown(self) -> None:
        if self._countdown_job is not None:
            self.after_cancel(self._countdown_job)
            self._countdown_job = None

    def destroy(self) -> None:  # pragma: no cover - lifecycle hook
        self._cancel_countdown()
        super().destroy()
