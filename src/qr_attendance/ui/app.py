from __future__ import annotations

import logging
import os
from tkinter import StringVar

import customtkinter as ctk

from qr_attendance.config.settings import settings
from qr_attendance.models import AttendanceRecord
from qr_attendance.services import AttendanceService
from qr_attendance.ui.scan_dialog import ScanDialog
from qr_attendance.ui.theme import (
    TONE_COLORS,
    VS_ACCENT,
    VS_ACCENT_HOVER,
    VS_BG,
    VS_CARD,
    VS_TEXT,
    VS_TEXT_MUTED,
)
from qr_attendance.ui.token_view import TokenView

logger = logging.getLogger(__name__)


class StudentView(ctk.CTkFrame):
    """Student panel that opens the scan dialog for a session."""

    def __init__(self, master, service: AttendanceService) -> None:
        super().__init__(master, fg_color=VS_BG)
        self._service = service
        self._dialog: ScanDialog | None = None

        self.session_id_var = StringVar()
        self.student_id_var = StringVar()
        self._status_var = StringVar(value="Enter your session and student ID, then scan the code on screen.")

        self.grid_columnconfigure(0, weight=1)
        card = ctk.CTkFrame(self, fg_color=VS_CARD, corner_radius=16)
        card.grid(row=0, column=0, padx=20, pady=20, sticky="ew")
        card.grid_columnconfigure(1, weight=1)

        ctk.CTkLabel(card, text="Session", text_color=VS_TEXT).grid(row=0, column=0, padx=(16, 8), pady=(16, 8), sticky="w")
        ctk.CTkEntry(card, textvariable=self.session_id_var).grid(row=0, column=1, padx=(0, 16), pady=(16, 8), sticky="ew")
        ctk.CTkLabel(card, text="Student ID", text_color=VS_TEXT).grid(row=1, column=0, padx=(16, 8), pady=8, sticky="w")
        ctk.CTkEntry(card, textvariable=self.student_id_var).grid(row=1, column=1, padx=(0, 16), pady=8, sticky="ew")

        ctk.CTkButton(
            card,
            text="Scan QR code",
            command=self._open_scanner,
            fg_color=VS_ACCENT,
            hover_color=VS_ACCENT_HOVER,
        ).grid(row=2, column=0, columnspan=2, padx=16, pady=(8, 16), sticky="ew")

        self._status_label = ctk.CTkLabel(
            self, textvariable=self._status_var, text_color=VS_TEXT_MUTED, wraplength=520, justify="left"
        )
        self._status_label.grid(row=1, column=0, padx=24, sticky="w")

    def _set_status(self, message: str, tone: str = "info") -> None:
        self._status_var.set(message)
        self._status_label.configure(text_color=TONE_COLORS.get(tone, VS_TEXT_MUTED))

    def _open_scanner(self) -> None:
        if self._dialog is not None and self._dialog.winfo_exists():
            self._dialog.focus()
            return

        student_id = self.student_id_var.get().strip()
        try:
            session_id = int(self.session_id_var.get().strip())
        except ValueError:
            self._set_status("Session must be a number.", tone="warning")
            return
        if not student_id:
            self._set_status("Student ID is required.", tone="warning")
            return

        session = self._service.get_session(session_id)
        if not session.ok:
            self._set_status(session.message, tone="warning")
            return

        self._dialog = ScanDialog(
            self,
            self._service,
            session_id=session_id,
            student_id=student_id,
            on_success=self._handle_success,
        )

    def _handle_success(self, record: AttendanceRecord) -> None:
        self._set_status(f"Checked in as {record.student_id} ({record.status.value}).", tone="success")


class AttendanceApp:
    def __init__(self, service: AttendanceService | None = None) -> None:
        ctk.set_appearance_mode("dark")

        self._root = ctk.CTk()
        self._root.title(settings.app_name)
        self._root.geometry("720x820")
        self._root.minsize(560, 640)
        self._root.configure(fg_color=VS_BG)

        self._service = service or AttendanceService.from_settings()
        self._service.initialize()

        self._root.grid_rowconfigure(0, weight=1)
        self._root.grid_columnconfigure(0, weight=1)

        tabs = ctk.CTkTabview(self._root, fg_color=VS_BG)
        tabs.grid(row=0, column=0, padx=12, pady=12, sticky="nsew")

        teacher_tab = tabs.add("Teacher")
        teacher_tab.grid_columnconfigure(0, weight=1)
        teacher_tab.grid_rowconfigure(0, weight=1)
        self._token_view = TokenView(teacher_tab, self._service)
        self._token_view.grid(row=0, column=0, sticky="nsew")

        student_tab = tabs.add("Student")
        student_tab.grid_columnconfigure(0, weight=1)
        self._student_view = StudentView(student_tab, self._service)
        self._student_view.grid(row=0, column=0, sticky="nsew")

        tabs.set("Teacher")
        self._root.after(0, self._maximize_window)
        logger.info("Attendance app started with database %s", settings.database_path)

    def run(self) -> None:
        self._root.mainloop()

    def _maximize_window(self) -> None:
        try:
            if os.name == "nt":
                self._root.state("zoomed")
            else:
                self._root.attributes("-zoomed", True)
        except Exception:
            # Ignore platforms that don't support zoomed state
            pass
