from .attendance_service import AttendanceService
from .geofence import GeofenceDecision, evaluate, haversine_distance
from .qr_scanner import QRScanner
from .result import ErrorKind, Result
from .scan_machine import ScanSessionStateMachine, ScanSnapshot, ScanState
from .sweeper import AbsenteeSweeper
from .token_issuer import TokenIssuer
from .verifier import AttendanceVerifier, MissingLocationPolicy

__all__ = [
	"AbsenteeSweeper",
	"AttendanceService",
	"AttendanceVerifier",
	"ErrorKind",
	"GeofenceDecision",
	"MissingLocationPolicy",
	"QRScanner",
	"Result",
	"ScanSessionStateMachine",
	"ScanSnapshot",
	"ScanState",
	"TokenIssuer",
	"evaluate",
	"haversine_distance",
]
