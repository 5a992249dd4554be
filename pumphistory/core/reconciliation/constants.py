"""Reconciliation constants.

Time spans are in milliseconds unless the name says otherwise, matching
the units devices report durations in.
"""

from typing import Final

MS_PER_DAY: Final[int] = 86_400_000

# Clock changes are rounded to this quantum; some zones sit on quarter
# hours (e.g. UTC+12:45).
OFFSET_QUANTUM_MINUTES: Final[int] = 15

# UTC+14 to UTC-12 is the widest possible span between two zones.
MAX_OFFSET_CHANGE_MINUTES: Final[int] = 840 + 720

# Schedule rates are compared with this absolute tolerance (U/hr).
RATE_MATCH_TOLERANCE: Final[float] = 1e-6
