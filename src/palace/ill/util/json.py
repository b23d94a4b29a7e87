from __future__ import annotations

import json
from typing import Any

from pydantic_core import to_jsonable_python


def json_serializer(obj: Any, **kwargs: Any) -> str:
    """`json.dumps` that also handles datetimes, enums and pydantic models."""
    return json.dumps(obj, default=to_jsonable_python, **kwargs)
