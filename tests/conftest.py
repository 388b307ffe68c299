import pytest

from healthportal import create_app
from healthportal.config import Config
from healthportal.extensions import db


class MemoryConfig(Config):
    TESTING = True
    STORAGE_BACKEND = "memory"
    LOG_LEVEL = "WARNING"


class SqlConfig(MemoryConfig):
    STORAGE_BACKEND = "sql"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    AUTO_CREATE_TABLES = True


@pytest.fixture(params=[MemoryConfig, SqlConfig], ids=["memory", "sql"])
def app(request):
    app = create_app(request.param)
    with app.app_context():
        yield app
        if app.config["STORAGE_BACKEND"] == "sql":
            db.session.remove()
            db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def storage(app):
    return app.extensions["storage"]
