from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class TaskResult:
    """Outcome of a send operation."""
    is_success: bool
