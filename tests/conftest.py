import os

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("CAPTION_PROVIDER", "none")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from core.db import DB
from core.models import Base


@pytest.fixture
def memory_db(tmp_path):
    db_path = tmp_path / "agentmemory.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    previous_engine = DB.engine
    previous_session = DB.SessionLocal
    DB.engine = engine
    DB.SessionLocal = SessionLocal
    try:
        yield SessionLocal
    finally:
        DB.engine = previous_engine
        DB.SessionLocal = previous_session
        engine.dispose()


class FakeStore:
    """In-memory stand-in for a memory-type store."""

    def __init__(self, memory_type, agent_id, user_id, fail_init=False, fail_store=False, fail_retrieve=False):
        self.memory_type = memory_type
        self.agent_id = str(agent_id)
        self.user_id = str(user_id)
        self.fail_init = fail_init
        self.fail_store = fail_store
        self.fail_retrieve = fail_retrieve
        self.init_calls = 0
        self.stored = []
        self.candidates = []

    async def initialize(self):
        self.init_calls += 1
        if self.fail_init:
            raise RuntimeError(f"{self.memory_type} store unavailable")

    async def store(self, content, context, metadata=None):
        if self.fail_store:
            raise RuntimeError(f"{self.memory_type} write failed")
        record = {"id": f"{self.memory_type}-{len(self.stored) + 1}", "stored": True}
        self.stored.append((content, context, metadata))
        return record

    async def retrieve(self, query, context, options=None):
        if self.fail_retrieve:
            raise RuntimeError(f"{self.memory_type} read failed")
        return list(self.candidates)

    def stats(self):
        return {"stores": len(self.stored), "retrievals": 0, "failures": 0, "records": len(self.stored)}


class FakeStoreFactory:
    def __init__(self, **failures):
        self.failures = failures
        self.created = []

    def __call__(self, agent_id, user_id):
        stores = {
            memory_type: FakeStore(
                memory_type,
                agent_id,
                user_id,
                fail_init=memory_type in self.failures.get("fail_init", ()),
                fail_store=memory_type in self.failures.get("fail_store", ()),
                fail_retrieve=memory_type in self.failures.get("fail_retrieve", ()),
            )
            for memory_type in ("working", "episodic", "semantic", "procedural")
        }
        self.created.append(stores)
        return stores


class FailingCaptionProvider:
    def __init__(self):
        self.calls = 0

    async def generate(self, image_data, prompt, system_prompt=None):
        self.calls += 1
        raise RuntimeError("vision model unavailable")


class StaticCaptionProvider:
    def __init__(self, caption):
        self.caption = caption
        self.prompts = []

    async def generate(self, image_data, prompt, system_prompt=None):
        self.prompts.append((prompt, system_prompt))
        return self.caption


@pytest.fixture
def store_factory():
    return FakeStoreFactory()
