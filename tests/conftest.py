import pytest
from sqlalchemy import event

from app import create_app
from config import Config
from models import db


class AppConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    REDIS_URL = None
    STRIPE_WEBHOOK_SECRET = "whsec_test"
    SERVICE_TIMEZONE = "America/Argentina/Buenos_Aires"
    GRACE_MINUTES = 30
    WORK_START = "08:00"
    WORK_END = "20:00"
    SUBSCRIPTION_DAYS = 30
    SUBSCRIPTION_RENEWAL_POLICY = "extend"
    LOG_LEVEL = "WARNING"


class FakeRedis:
    """Just enough of the redis client API for the availability cache."""

    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        return True

    def incr(self, key):
        self.store[key] = str(int(self.store.get(key) or 0) + 1)
        return int(self.store[key])


def _make_app(config, cache_client=None):
    app = create_app(config, cache_client=cache_client)
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    return app, ctx


def _teardown(ctx):
    db.session.remove()
    db.drop_all()
    ctx.pop()


@pytest.fixture
def app():
    app, ctx = _make_app(AppConfig)
    yield app
    _teardown(ctx)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cached_app(fake_redis):
    app, ctx = _make_app(AppConfig, cache_client=fake_redis)
    yield app
    _teardown(ctx)


@pytest.fixture
def file_app(tmp_path):
    """App on a file database, for tests that use more than one connection."""

    class FileConfig(AppConfig):
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "booking.db")
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}}

    app, ctx = _make_app(FileConfig)

    # pysqlite defers BEGIN; take the write lock up front so racing writers
    # queue on the busy timeout instead of deadlocking on lock promotion
    @event.listens_for(db.engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(db.engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    db.session.remove()
    db.engine.dispose()
    yield app
    _teardown(ctx)


@pytest.fixture
def client(app):
    return app.test_client()


def headers(user_id="alice", roles=""):
    return {"X-User-Id": user_id, "X-User-Roles": roles}


@pytest.fixture
def user_headers():
    return headers("alice")


@pytest.fixture
def admin_headers():
    return headers("root", "ADMIN")


@pytest.fixture
def system_headers():
    return headers("gateway", "SYSTEM")


@pytest.fixture
def make_headers():
    return headers
