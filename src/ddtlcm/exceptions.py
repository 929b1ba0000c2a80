"""
Exceptions raised by the DDT-LCM sampler.

Exception Hierarchy:
    DDTLCMError (base)
    ├── InputValidationError (bad data, membership or settings; raised before sampling)
    └── NumericDomainError (values outside their mathematical domain during sampling)

Rejected tree proposals are not errors: they are reported through
``TreeMove.accepted`` and never raise.
"""


class DDTLCMError(Exception):
    """Base class for all errors raised by this package."""


class InputValidationError(DDTLCMError, ValueError):
    """
    Raised when the inputs to a run are unusable.

    Covers non-binary response entries, item membership that is not a
    partition of the items, too few classes, shape mismatches and burn-in
    counts that leave no retained samples. Always raised before the first
    iteration executes.
    """


class NumericDomainError(DDTLCMError, ArithmeticError):
    """
    Raised when a quantity leaves its mathematical domain.

    Examples are a negative diffusion variance, a divergence time outside
    [0, 1), a non-positive divergence constant or a non-finite log-posterior
    of the chain state. These indicate a modeling or data inconsistency and
    abort the run.
    """

    def __init__(self, message: str, context: dict = None):
        super().__init__(message)
        self.context = context or {}
