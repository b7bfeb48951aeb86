"""Infrastructure modules for cascade-trader"""

from .metrics import MetricsRecorder, CycleStats  # noqa: F401
from .control_server import ControlServer  # noqa: F401
from .state_store import StateStore  # noqa: F401

__all__ = [
	"MetricsRecorder",
	"CycleStats",
	"ControlServer",
	"StateStore",
]
