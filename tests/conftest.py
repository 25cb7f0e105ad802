from __future__ import annotations

import pytest

from kbnorm.domain.document import JsonValue
from tests.helpers.transform import RecordingSleep


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def knowledge_base() -> JsonValue:
    return {
        "title": "Optimization",
        "chapters": [
            {
                "name": "Gradient methods",
                "description": "solve min f(x)",
                "knowledge_points": [
                    {"name": "step size", "description": "choose t > 0", "difficulty": "easy"},
                    {"name": "line search", "description": "backtracking on f"},
                ],
            },
            {
                "name": "Constraints",
                "description": "Ax=b",
                "relations": [{"name": "duality", "description": 3}],
            },
        ],
        "meta": {"name": "ignored", "version": 2},
    }
