class HucToolsError(Exception):
    """Base class for errors raised by huc_tools"""


class ConfigurationError(HucToolsError):
    """Required inputs are missing or a run configuration cannot be read"""


class EnumerationError(HucToolsError):
    """The work-item registry could not be enumerated or was empty"""


class PlanningError(HucToolsError):
    """Chunk parameters are degenerate"""


class DispatchError(HucToolsError):
    """The scheduler rejected an array submission"""


class LockContention(HucToolsError):
    """Another worker currently holds an item's lock"""


class StaleLockError(HucToolsError):
    """An item's lock is older than the staleness threshold and reclaiming is disabled"""


class ItemClipFailure(HucToolsError):
    """The external clip operation failed for a single work item"""
    def __init__(self, item_id: str, message: str):
        super().__init__(f'{item_id}: {message}')
        self.item_id = item_id
        self.message = message
