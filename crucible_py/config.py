"""App configuration.

Options come from explicit overrides first, then the environment:

    CRUCIBLE_STAGE          stage name (falls back to $USER, then "dev")
    CRUCIBLE_DIR            dot directory for state and logs (.crucible)
    CRUCIBLE_STATE_BACKEND  memory | fs | sqlite | s3 (fs)
    CRUCIBLE_STATE_FILE     SQLite file (<dot_dir>/state.sqlite)
    CRUCIBLE_STATE_BUCKET   bucket for the s3 backend
    CRUCIBLE_STATE_PREFIX   key prefix inside that bucket
    CRUCIBLE_PASSWORD       passphrase that encrypts secrets in state
"""

import os
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from .engine.resource import DestroyStrategy, Phase
from .engine.scope import default_stage
from .errors import ConfigurationError
from .state import StateStoreFactory, filesystem_store, memory_store, object_store, sqlite_store


StateBackend = Literal["memory", "fs", "sqlite", "s3"]


class AppOptions(BaseModel):
    """Options for one app/stage run."""

    model_config = ConfigDict(extra='forbid')

    stage: str = Field(default_factory=default_stage, description="Stage name")
    phase: Phase = Field(default=Phase.UP, description="up, destroy or read")
    force: bool = Field(default=False, description="Re-run handlers even when props are unchanged")
    adopt: bool = Field(default=False, description="Adopt pre-existing physical resources")
    quiet: bool = Field(default=False, description="Log lifecycle transitions at DEBUG")
    destroy_strategy: DestroyStrategy = Field(default=DestroyStrategy.SEQUENTIAL)
    dot_dir: Path = Field(default=Path(".crucible"), description="Directory for state and logs")
    state_backend: StateBackend = Field(default="fs")
    state_file: Optional[Path] = Field(default=None, description="SQLite file for the sqlite backend")
    state_bucket: Optional[str] = Field(default=None, description="Bucket for the s3 backend")
    state_prefix: str = Field(default="", description="Key prefix inside the state bucket")
    event_log: bool = Field(default=False, description="Write an NDJSON lifecycle event log")
    password: Optional[SecretStr] = Field(default=None, description="Passphrase that encrypts secrets in state")

    @classmethod
    def from_env(cls, **overrides: Any) -> "AppOptions":
        """Build options from the environment; non-None overrides win."""
        values: dict = {}
        if os.environ.get("CRUCIBLE_DIR"):
            values["dot_dir"] = Path(os.environ["CRUCIBLE_DIR"])
        if os.environ.get("CRUCIBLE_STATE_BACKEND"):
            values["state_backend"] = os.environ["CRUCIBLE_STATE_BACKEND"]
        if os.environ.get("CRUCIBLE_STATE_FILE"):
            values["state_file"] = Path(os.environ["CRUCIBLE_STATE_FILE"])
        if os.environ.get("CRUCIBLE_STATE_BUCKET"):
            values["state_bucket"] = os.environ["CRUCIBLE_STATE_BUCKET"]
        if os.environ.get("CRUCIBLE_STATE_PREFIX"):
            values["state_prefix"] = os.environ["CRUCIBLE_STATE_PREFIX"]
        if os.environ.get("CRUCIBLE_PASSWORD"):
            values["password"] = os.environ["CRUCIBLE_PASSWORD"]
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def state_store_factory(self) -> StateStoreFactory:
        if self.state_backend == "memory":
            return memory_store()
        if self.state_backend == "sqlite":
            return sqlite_store(self.state_file or self.dot_dir / "state.sqlite")
        if self.state_backend == "s3":
            if not self.state_bucket:
                raise ConfigurationError("The s3 state backend needs a bucket (CRUCIBLE_STATE_BUCKET)")
            return object_store(self.state_bucket, prefix=self.state_prefix)
        return filesystem_store(self.dot_dir / "state")
