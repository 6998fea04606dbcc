from __future__ import annotations

import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_dependencies():
    from app import Config, create_app
    from backend.leadflow.crm.memory import InMemoryCrmGateway
    from backend.leadflow.extensions import db

    return Config, create_app, db, InMemoryCrmGateway


ConfigBase, create_app, db, InMemoryCrmGateway = _load_dependencies()


class TestConfig(ConfigBase):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite+pysqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {"check_same_thread": False, "timeout": 30},
    }
    CORS_ALLOWED_ORIGINS = "http://localhost"
    DB_INIT_MAX_RETRIES = 1
    RATELIMIT_ENABLED = False
    ENABLE_RESUME_SCHEDULER = False
    AUTOMATION_MAX_HOPS = 10
    AUTOMATION_DISPATCH_WORKERS = 4


def make_app(db_path: pathlib.Path, gateway):
    """Build an app on a SQLite file so worker threads get their own connections."""

    config = type(
        "FileDatabaseConfig",
        (TestConfig,),
        {"SQLALCHEMY_DATABASE_URI": f"sqlite+pysqlite:///{db_path}"},
    )
    return create_app(config, crm_gateway=gateway)


def seed_crm(gateway) -> None:
    gateway.add_status("new", "contacted", "offer", "closed")
    gateway.add_user("U1", "A", "B", "C", "owner")
    gateway.add_tag_definition("tag-hot", "tag-cold")
    gateway.add_motivation_definition("motivation-probate", "motivation-divorce")
    gateway.add_board("board-1", ["col-new", "col-offer"])


@pytest.fixture(scope="module")
def crm():
    gateway = InMemoryCrmGateway()
    seed_crm(gateway)
    return gateway


@pytest.fixture(scope="module")
def db_path(tmp_path_factory):
    return tmp_path_factory.mktemp("leadflow") / "leadflow.db"


@pytest.fixture(scope="module")
def app(db_path, crm):
    from backend.leadflow.automation import get_engine

    app = make_app(db_path, crm)
    ctx = app.app_context()
    ctx.push()
    yield app
    get_engine(app).dispatcher.shutdown()
    db.session.remove()
    ctx.pop()


@pytest.fixture()
def app_factory(db_path, crm):
    """Build another app on the same database, as after a process restart."""

    return lambda: make_app(db_path, crm)


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def engine(app):
    from backend.leadflow.automation import get_engine

    return get_engine(app)


@pytest.fixture(autouse=True)
def cleanup_state(request):
    yield

    if "app" not in request.fixturenames:
        return

    from backend.leadflow.automation import get_engine
    from backend.leadflow.models import Automation, AutomationFolder, ExecutionRun, RoundRobinCursor

    app = request.getfixturevalue("app")
    crm = request.getfixturevalue("crm")
    get_engine(app).dispatcher.drain(timeout=30)
    db.session.rollback()
    db.session.query(ExecutionRun).delete()
    db.session.query(RoundRobinCursor).delete()
    db.session.query(Automation).delete()
    db.session.query(AutomationFolder).delete()
    db.session.commit()
    crm.clear()
    seed_crm(crm)
