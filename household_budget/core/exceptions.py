"""
Custom exceptions for the budget engine.

Four families, each recoverable by the caller:

* setup-needed (``SetupRequiredError``) - expected for new households, the
  caller should prompt for budget configuration rather than fail.
* validation (``ValidationError``) - rejected synchronously, nothing written.
* conflict (``ConflictError``) - re-read and retry.
* not-found (``NotFoundError``).
"""

class BaseAppException(Exception):
    """Base application exception"""
    def __init__(self, message: str, details: str = None):
        self.message = message
        self.details = details
        super().__init__(self.message)


class NotFoundError(BaseAppException):
    """Raised when a resource is not found"""
    pass


class ValidationError(BaseAppException):
    """Raised when validation fails"""
    def __init__(self, message: str, details: str = None, error_code: str = None):
        super().__init__(message, details)
        self.error_code = error_code


class ConflictError(BaseAppException):
    """Raised when an optimistic guard fails; safe to retry with fresh state"""
    pass


class SetupRequiredError(BaseAppException):
    """Raised when the household has not configured the data an operation needs"""
    pass


class HouseholdHasNoTemplate(SetupRequiredError):
    def __init__(self, household_id=None):
        super().__init__(
            "No budget template configured for this household",
            details=str(household_id) if household_id else None,
        )
        self.household_id = household_id


class DuplicatePendingAdjustment(ValidationError):
    def __init__(self, category_name: str, year: int, month: int):
        super().__init__(
            f"An adjustment for '{category_name}' is already scheduled for {year}-{month:02d}",
            details="Cancel the pending adjustment before scheduling a new one",
            error_code="duplicate_pending_adjustment",
        )
        self.category_name = category_name
        self.effective_year = year
        self.effective_month = month


class CategoryInUse(ValidationError):
    def __init__(self, category_name: str, count: int):
        super().__init__(
            f"Category '{category_name}' is used by {count} transaction(s)",
            details="Supply a reassignment target to move them first",
            error_code="category_in_use",
        )
        self.category_name = category_name
        self.count = count


class LockedMonthMutation(ValidationError):
    def __init__(self, year: int, month: int):
        super().__init__(
            f"Monthly budget {year}-{month:02d} is locked",
            error_code="locked_month",
        )
        self.year = year
        self.month = month


class ActiveVersionProtected(ValidationError):
    def __init__(self, version: int):
        super().__init__(
            f"Budget template version {version} is active and cannot be deleted",
            details="Activate another version first",
            error_code="active_version_protected",
        )
        self.version = version


class ConcurrentVersionConflict(ConflictError):
    def __init__(self, message: str = "Budget state changed concurrently, please retry", details: str = None):
        super().__init__(message, details)
