"""Fraud oracle implementations and factory.

Three oracles:
    - RuleBasedFraudOracle:  Weighted in-process rule set (default)
    - HttpFraudOracle:       Remote scoring service over HTTP
    - MockFraudOracle:       Instant configurable pass/fail for tests and dry runs

The FraudOracleFactory creates the oracle named by FRAUD_ORACLE_TYPE.
"""

from __future__ import annotations

from resale_escrow.domain.fraud_protocol import (
    FraudCheckRequest,
    FraudCheckResult,
    FraudOracle,
)
from resale_escrow.fraud.http_oracle import HttpFraudOracle
from resale_escrow.fraud.rules import RuleBasedFraudOracle


class MockFraudOracle:
    """Instant mock oracle for dry-run simulations and tests.

    Returns a fixed result with zero network calls. Set `unavailable=True`
    to simulate an outage.
    """

    def __init__(
        self,
        passed: bool = True,
        risk_score: int | None = None,
        warnings: list[str] | None = None,
        unavailable: bool = False,
    ) -> None:
        self.passed = passed
        self.risk_score = risk_score if risk_score is not None else (0 if passed else 80)
        self.warnings = warnings or ([] if passed else ["Mock fraud check failed"])
        self.unavailable = unavailable
        self.calls: list[FraudCheckRequest] = []

    async def score(self, request: FraudCheckRequest) -> FraudCheckResult:
        from resale_escrow.domain.exceptions import FraudOracleUnavailableError

        self.calls.append(request)
        if self.unavailable:
            raise FraudOracleUnavailableError("Mock fraud oracle is offline")
        return FraudCheckResult(
            passed=self.passed,
            risk_score=self.risk_score,
            warnings=list(self.warnings),
            checks={"mode": "mock"},
        )


class FraudOracleFactory:
    """Factory that creates the configured fraud oracle.

    Usage:
        oracle = FraudOracleFactory.create("rules")
        result = await oracle.score(request)

        # Dry-run mode:
        oracle = FraudOracleFactory.create("mock")
    """

    _registry: dict[str, type] = {
        "rules": RuleBasedFraudOracle,
        "http": HttpFraudOracle,
        "mock": MockFraudOracle,
    }

    @classmethod
    def create(cls, oracle_type: str | None = None) -> FraudOracle:
        """Create an oracle instance.

        Args:
            oracle_type: One of the registry keys. Defaults to FRAUD_ORACLE_TYPE.

        Raises:
            ValueError: If the type is unknown.
        """
        if oracle_type is None:
            from resale_escrow.config import get_settings

            oracle_type = get_settings().fraud_oracle_type

        oracle_class = cls._registry.get(oracle_type)
        if oracle_class is None:
            raise ValueError(
                f"Unknown fraud oracle type: '{oracle_type}'. "
                f"Valid types: {list(cls._registry.keys())}"
            )
        return oracle_class()

    @classmethod
    def get_supported_types(cls) -> list[str]:
        """Return the list of supported oracle type strings."""
        return list(cls._registry.keys())


__all__ = [
    "FraudCheckRequest",
    "FraudCheckResult",
    "FraudOracle",
    "FraudOracleFactory",
    "HttpFraudOracle",
    "MockFraudOracle",
    "RuleBasedFraudOracle",
]
