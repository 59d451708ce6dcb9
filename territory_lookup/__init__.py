"""Texas territory operator (TDSP) lookup engine: address -> delivery utility, with confidence."""

from .config import Config
from .engine import TerritoryEngine
from .errors import ErrorCode, ResolutionError
from .models import Confidence, NormalizedAddress, RawAddress, ResolutionResult, TerritoryOperator

__all__ = [
    "Config",
    "Confidence",
    "ErrorCode",
    "NormalizedAddress",
    "RawAddress",
    "ResolutionError",
    "ResolutionResult",
    "TerritoryEngine",
    "TerritoryOperator",
]
