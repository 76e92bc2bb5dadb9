from __future__ import annotations


class LedgerError(Exception):
    """Base class for errors surfaced to the user at the point of an action."""


class ValidationError(LedgerError):
    """A required field is missing or invalid; the mutation was not attempted."""

    def __init__(self, problems: list[str] | str) -> None:
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class NotFoundError(LedgerError):
    def __init__(self, entity: str, entity_id: str | None) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class TransientIOError(LedgerError):
    """Backend failure that survived the single retry."""


class StorageError(LedgerError):
    """Backend failure that a retry cannot fix (constraint violation, malformed query)."""


class PartialBatchFailure(LedgerError):
    """Some rows of a multi-row mutation failed; the others stay committed."""

    def __init__(self, succeeded: list[str], failed: dict[str, str], already_paid: list[str] | None = None) -> None:
        self.succeeded = list(succeeded)
        self.failed = dict(failed)
        self.already_paid = list(already_paid or [])
        super().__init__(
            f"{len(self.failed)} of {len(self.succeeded) + len(self.failed)} rows failed: "
            + ", ".join(sorted(self.failed))
        )
