"""Tests for app configuration."""

from pathlib import Path

import boto3
import pytest
from moto import mock_aws
from pydantic import ValidationError

from .config import AppOptions
from .engine.resource import DestroyStrategy, Phase
from .errors import ConfigurationError
from .state import FileSystemStateStore, MemoryStateStore, ObjectStoreStateStore, SqliteStateStore
from .engine.scope import Scope


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "CRUCIBLE_STAGE",
        "CRUCIBLE_DIR",
        "CRUCIBLE_STATE_BACKEND",
        "CRUCIBLE_STATE_FILE",
        "CRUCIBLE_STATE_BUCKET",
        "CRUCIBLE_STATE_PREFIX",
        "CRUCIBLE_PASSWORD",
    ):
        monkeypatch.delenv(name, raising=False)


class TestAppOptions:
    """Test cases for AppOptions."""

    def test_defaults(self, monkeypatch):
        monkeypatch.setenv("CRUCIBLE_STAGE", "ci")
        options = AppOptions()

        assert options.stage == "ci"
        assert options.phase == Phase.UP
        assert options.destroy_strategy == DestroyStrategy.SEQUENTIAL
        assert options.dot_dir == Path(".crucible")
        assert options.state_backend == "fs"
        assert not options.force

    def test_string_values_are_coerced(self):
        options = AppOptions(phase="destroy", destroy_strategy="parallel")

        assert options.phase == Phase.DESTROY
        assert options.destroy_strategy == DestroyStrategy.PARALLEL

    def test_unknown_fields_rejected(self):
        with pytest.raises(ValidationError):
            AppOptions(stgae="typo")

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            AppOptions(state_backend="gcs")

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("CRUCIBLE_DIR", str(tmp_path))
        monkeypatch.setenv("CRUCIBLE_STATE_BACKEND", "sqlite")

        options = AppOptions.from_env(stage="prod", force=None)

        assert options.stage == "prod"
        assert options.dot_dir == tmp_path
        assert options.state_backend == "sqlite"
        assert options.force is False

    def test_overrides_win_over_env(self, monkeypatch):
        monkeypatch.setenv("CRUCIBLE_STATE_BACKEND", "sqlite")
        assert AppOptions.from_env(state_backend="memory").state_backend == "memory"

    def test_password_is_masked(self, monkeypatch):
        monkeypatch.setenv("CRUCIBLE_PASSWORD", "hunter2")

        options = AppOptions.from_env()

        assert options.password.get_secret_value() == "hunter2"
        assert "hunter2" not in repr(options)

    def test_bucket_from_env(self, monkeypatch):
        monkeypatch.setenv("CRUCIBLE_STATE_BACKEND", "s3")
        monkeypatch.setenv("CRUCIBLE_STATE_BUCKET", "infra-state")
        monkeypatch.setenv("CRUCIBLE_STATE_PREFIX", "crucible")

        options = AppOptions.from_env()

        assert options.state_backend == "s3"
        assert options.state_bucket == "infra-state"
        assert options.state_prefix == "crucible"


class TestStoreFactory:
    """Test cases for choosing a state backend."""

    def _store_for(self, options):
        root = Scope("app", stage="dev", state_store=options.state_store_factory(), dot_dir=options.dot_dir)
        return root.state.store

    def test_memory(self):
        assert isinstance(self._store_for(AppOptions(state_backend="memory")), MemoryStateStore)

    def test_filesystem(self, tmp_path):
        store = self._store_for(AppOptions(state_backend="fs", dot_dir=tmp_path))

        assert isinstance(store, FileSystemStateStore)
        assert store.dir == tmp_path / "state" / "app"

    def test_sqlite(self, tmp_path):
        store = self._store_for(AppOptions(state_backend="sqlite", dot_dir=tmp_path))

        assert isinstance(store, SqliteStateStore)
        assert store.db_path == str(tmp_path / "state.sqlite")

    def test_sqlite_explicit_file(self, tmp_path):
        options = AppOptions(state_backend="sqlite", state_file=tmp_path / "custom.db")
        assert self._store_for(options).db_path == str(tmp_path / "custom.db")

    def test_s3(self, monkeypatch):
        monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
        with mock_aws():
            boto3.client("s3", region_name="us-east-1").create_bucket(Bucket="infra-state")
            options = AppOptions(state_backend="s3", state_bucket="infra-state", state_prefix="/crucible/")
            store = self._store_for(options)

        assert isinstance(store, ObjectStoreStateStore)
        assert store.bucket == "infra-state"
        assert store.dir == "crucible/app/"

    def test_s3_without_bucket(self):
        with pytest.raises(ConfigurationError):
            AppOptions(state_backend="s3").state_store_factory()
