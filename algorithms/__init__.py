from .recurrence import RecurrenceEngine, occurs_on, occurrences_in_range
from .set_builder import SetBuilder

__all__ = ["RecurrenceEngine", "SetBuilder", "occurs_on", "occurrences_in_range"]
