from __future__ import annotations

import pytest


@pytest.fixture
def anyio_backend() -> str:
    # Force AnyIO-managed tests in relay suite to use asyncio only
    return "asyncio"
