import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from saledetail.core.db import init_db, close_db


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory SQLite database with every model registered."""
    await init_db(db_url="sqlite://:memory:")
    yield
    await close_db()


@pytest.fixture
def publisher():
    """Event publisher whose publish() succeeds unless configured otherwise."""
    mock_publisher = AsyncMock()
    mock_publisher.publish = AsyncMock(return_value=None)
    return mock_publisher


@pytest.fixture
def sale_created_payload():
    return {
        "MessageId": "msg-sale-S1",
        "sale_id": "S1",
        "items": [
            {"medicineId": 10, "quantity": 2, "price": 12.5},
            {"medicineId": "11", "quantity": "3", "price": "4.00"},
        ],
    }


