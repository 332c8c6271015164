import pytest

from kontextor.database import DatabaseManager
from kontextor.references import ReferenceManager


@pytest.fixture
def db():
    with DatabaseManager(":memory:") as manager:
        manager.initialize_database()
        yield manager


@pytest.fixture
def references(db):
    return ReferenceManager(db)


@pytest.fixture
def workspaces(db):
    """Three empty workspaces, created inside one transaction."""
    with db.transaction():
        return [db.create_workspace(name=f"W{i}").workspace_id for i in range(1, 4)]
