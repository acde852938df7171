from ._version import version as __version__
from .config import LearnFlowConfig, load_config
from .error_handler import (
    AcquisitionError,
    ErrorCategory,
    LearnFlowError,
    NoJsonFound,
    OperationExhaustedError,
)
from .json_extraction import extract_json
from .session_guard import SessionGuard, SessionState

__all__ = [
    "__version__",
    "AcquisitionError",
    "ErrorCategory",
    "LearnFlowConfig",
    "LearnFlowError",
    "NoJsonFound",
    "OperationExhaustedError",
    "SessionGuard",
    "SessionState",
    "extract_json",
    "load_config",
]
