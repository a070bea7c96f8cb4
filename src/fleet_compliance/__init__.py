"""Fleet compliance monitoring and number-coding violation detection."""

from .engine import ComplianceEngine, EngineTickReport

__version__ = "0.1.0"

__all__ = ["ComplianceEngine", "EngineTickReport", "__version__"]
