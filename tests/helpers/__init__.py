from .fake_service import FakeNoSQLService, FakeTable

__all__ = [
    "FakeNoSQLService",
    "FakeTable",
]
