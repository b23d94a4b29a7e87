from __future__ import annotations

from enum import Enum


class SentinelType(Enum):
    """
    Sentinel values used throughout the broker.

    It can be type hinted as: Literal[SentinelType.NotGiven]
    """

    NotGiven = "NotGiven"
    """
    We use this so we can differentiate between a variable that is not given
    and a variable that is given as None.
    """
