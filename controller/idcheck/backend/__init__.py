"""Remote judgment service clients."""
from .oracle_client import (
    GeminiJudgmentOracle,
    ImageJudgmentOracle,
    PhotoValidationClient,
    VerificationOracleClient,
)

__all__ = [
    "GeminiJudgmentOracle",
    "ImageJudgmentOracle",
    "PhotoValidationClient",
    "VerificationOracleClient",
]
