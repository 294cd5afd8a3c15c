import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from askai.config import PipelineConfig
from askai.core.datastore import SqlAlchemyDatastore
from askai.core.token_ledger import SqlTokenLedger
from askai.exceptions import IndexUnavailableError, ProviderError
from askai.models import CompletionResponse, SchemaColumn, SchemaFragment, SchemaRelationship, TokenUsage
from askai.text2sql import Text2SQL

DIMENSIONS = 64


class FakeEmbeddingProvider:
    """Known texts map to fixed vectors; every other text gets its own axis."""

    def __init__(self, vectors=None, error=None):
        self.vectors = dict(vectors or {})
        self.error = error
        self.calls = []
        self._next_axis = DIMENSIONS - 1

    async def embed(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if text not in self.vectors:
            vector = [0.0] * DIMENSIONS
            vector[self._next_axis] = 1.0
            self._next_axis -= 1
            self.vectors[text] = tuple(vector)
        return self.vectors[text]


class FakeCompletionProvider:
    def __init__(self, text="SELECT 1", usage=None, error=None):
        self.text = text
        self.usage = usage
        self.error = error
        self.calls = []

    async def complete(self, system_prompt, user_prompt, sampling):
        self.calls.append((system_prompt, user_prompt, sampling))
        if self.error is not None:
            raise self.error
        return CompletionResponse(text=self.text, usage=self.usage)


class FakeVectorIndex:
    def __init__(self, matches=None, error=None):
        self.matches = list(matches or [])
        self.error = error
        self.calls = []

    async def search(self, vector, k, query_text=None):
        self.calls.append((vector, k, query_text))
        if self.error is not None:
            raise self.error
        return self.matches[:k]


class RecordingDatastore:
    def __init__(self, datastore):
        self.datastore = datastore
        self.calls = []

    async def execute(self, sql, params=None):
        self.calls.append((sql, dict(params or {})))
        return await self.datastore.execute(sql, params)


def axis(index, scale=1.0):
    vector = [0.0] * DIMENSIONS
    vector[index] = scale
    return tuple(vector)


def column(name, data_type="int", **flags):
    return SchemaColumn(name=name, data_type=data_type, **flags)


PARTICIPANT = SchemaFragment(
    table_name="Participant",
    description="Registered participants",
    columns=(
        column("FirstName", "nvarchar(100)"),
        column("ApplicationId", is_foreign_key=True, is_nullable=False),
        column("Id", is_primary_key=True, is_nullable=False, is_identity=True),
        column("IsDeleted", "bit", is_nullable=False),
    ),
)

PARTICIPANT_INSTANCE = SchemaFragment(
    table_name="Participant_ApplicationInstance",
    description="Participants per event",
    columns=(
        column("Id", is_primary_key=True, is_nullable=False),
        column("ParticipantId", is_foreign_key=True, is_nullable=False),
        column("ApplicationInstanceId", is_foreign_key=True, is_nullable=False),
        column("CheckInStatus", "bit"),
    ),
    relationships=(
        SchemaRelationship(
            from_table="Participant_ApplicationInstance",
            from_column="ParticipantId",
            to_table="Participant",
            to_column="Id",
            description="registration belongs to a participant",
        ),
    ),
)

ACTIVE_QUERY = "How many active participants are there?"
ACTIVE_SQL = (
    "SELECT p.Id, p.FirstName FROM Participant p "
    "WHERE p.IsDeleted = 0 AND p.ApplicationId = @ApplicationId ORDER BY p.Id"
)
CHECKED_IN_SQL = (
    "SELECT p.Id, p.FirstName FROM Participant p "
    "JOIN Participant_ApplicationInstance pai ON p.Id = pai.ParticipantId "
    "WHERE p.IsDeleted = 0 AND pai.isDeleted = 0 AND p.ApplicationId = @ApplicationId "
    "AND pai.ApplicationInstanceId = @EventId AND pai.CheckInStatus = 1 ORDER BY p.Id"
)

SEED_STATEMENTS = (
    "CREATE TABLE Participant (Id INTEGER PRIMARY KEY, ApplicationId INTEGER NOT NULL, "
    "FirstName TEXT, LastName TEXT, IsDeleted INTEGER NOT NULL DEFAULT 0)",
    "CREATE TABLE Participant_ApplicationInstance (Id INTEGER PRIMARY KEY, "
    "ParticipantId INTEGER NOT NULL, ApplicationInstanceId INTEGER NOT NULL, "
    "CheckInStatus INTEGER NOT NULL DEFAULT 0, isDeleted INTEGER NOT NULL DEFAULT 0)",
    "INSERT INTO Participant VALUES (1, 1, 'Ada', 'Lovelace', 0)",
    "INSERT INTO Participant VALUES (2, 1, 'Grace', 'Hopper', 0)",
    "INSERT INTO Participant VALUES (3, 1, 'Deleted', 'Person', 1)",
    "INSERT INTO Participant VALUES (4, 2, 'Other', 'Tenant', 0)",
    "INSERT INTO Participant_ApplicationInstance VALUES (1, 1, 42, 1, 0)",
    "INSERT INTO Participant_ApplicationInstance VALUES (2, 2, 42, 0, 0)",
    "INSERT INTO Participant_ApplicationInstance VALUES (3, 2, 7, 1, 0)",
    "CREATE TABLE ParticipantInterest (Id INTEGER PRIMARY KEY, ParticipantId INTEGER NOT NULL, "
    "Interest TEXT NOT NULL)",
    "INSERT INTO ParticipantInterest VALUES (1, 1, 'Artificial Intelligence (AI)')",
    "INSERT INTO ParticipantInterest VALUES (2, 2, 'Compilers')",
    "INSERT INTO ParticipantInterest VALUES (3, 4, 'AI safety')",
)


def memory_engine():
    return create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest_asyncio.fixture(scope="function")
async def datastore():
    engine = memory_engine()
    async with engine.begin() as conn:
        for statement in SEED_STATEMENTS:
            await conn.execute(text(statement))
    store = SqlAlchemyDatastore(engine=engine)
    yield store
    await store.dispose()


@pytest_asyncio.fixture(scope="function")
async def ledger():
    token_ledger = SqlTokenLedger(token_limit=100000, engine=memory_engine())
    await token_ledger.create_tables()
    yield token_ledger
    await token_ledger.dispose()


@pytest.fixture
def embedding_provider():
    return FakeEmbeddingProvider({
        ACTIVE_QUERY: axis(0),
        # cosine with ACTIVE_QUERY ~0.9988
        "How many active participants are there": tuple(
            0.99 if i == 0 else (0.05 if i == 1 else 0.0) for i in range(DIMENSIONS)
        ),
        "Show participants who checked in": axis(1),
    })


@pytest.fixture
def completion_provider():
    return FakeCompletionProvider(
        text=f"```sql\n{ACTIVE_SQL}\n```",
        usage=TokenUsage(prompt=100, completion=23, total=123),
    )


@pytest.fixture
def vector_index():
    return FakeVectorIndex([(PARTICIPANT, 0.8), (PARTICIPANT_INSTANCE, 0.6)])


@pytest.fixture
def recording_datastore(datastore):
    return RecordingDatastore(datastore)


@pytest.fixture
def pipeline(embedding_provider, completion_provider, vector_index, recording_datastore, ledger):
    return Text2SQL(
        embedding_provider=embedding_provider,
        completion_provider=completion_provider,
        vector_index=vector_index,
        datastore=recording_datastore,
        token_ledger=ledger,
        config=PipelineConfig(),
    )


@pytest.fixture
def provider_failure():
    return ProviderError("connection refused")


@pytest.fixture
def index_failure():
    return IndexUnavailableError("collection missing")
