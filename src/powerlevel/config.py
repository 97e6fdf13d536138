"""Configuration management for powerlevel."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, Field

CONFIG_DIRNAME = ".powerlevel"
CONFIG_FILENAME = "config.yaml"


class TrackingConfig(BaseModel):
    """What gets recorded and pushed during a session."""

    auto_update_epics: bool = Field(default=True, description="Push dirty epics at checkpoints")
    update_on_task_complete: bool = Field(default=True, description="Scan commits for completed tasks at session end")
    comment_on_progress: bool = Field(default=False, description="Post a comment on the epic for each completed task")


class ProjectBoardConfig(BaseModel):
    """Project board integration settings."""

    enabled: bool = Field(default=True, description="Add created issues to a project board")
    number: int | None = Field(default=None, description="Board number owned by the repo owner; detected if not set")


class SyncConfig(BaseModel):
    """Remote call behavior."""

    concurrency: int = Field(default=4, ge=1, description="Maximum concurrent remote calls during flush/reconcile")
    max_retries: int = Field(default=3, ge=1, description="Attempts per call for rate-limit and network errors")
    initial_backoff: float = Field(default=1.0, ge=0, description="Base backoff in seconds (doubles per attempt)")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    dry_run: bool = Field(default=False, description="Log operations without executing")
    create_labels_if_missing: bool = Field(default=True, description="Create powerlevel labels if they don't exist")


class ExternalTarget(BaseModel):
    """An epic that mirrors a foreign repository."""

    epic: int
    repo: str
    description: str = ""


class ExternalConfig(BaseModel):
    """External repository reconciliation settings."""

    label_filters: list[str | None] = Field(
        default_factory=lambda: ["type/epic", "epic", None],
        description="Label filters tried in order; None means no filter",
    )
    targets: list[ExternalTarget] = Field(default_factory=list)


class Config(BaseModel):
    """Powerlevel configuration."""

    tracking: TrackingConfig = Field(default_factory=TrackingConfig)
    project_board: ProjectBoardConfig = Field(default_factory=ProjectBoardConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    external: ExternalConfig = Field(default_factory=ExternalConfig)
    cache_dir: Path | None = Field(default=None, description="Cache root; defaults to ~/.cache/powerlevel")

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """Load configuration from file or use defaults."""
        if config_path is None:
            # Look for config in .powerlevel/config.yaml
            config_path = Path(CONFIG_DIRNAME) / CONFIG_FILENAME

        if config_path.exists():
            with config_path.open() as f:
                data = yaml.safe_load(f) or {}
            return cls.model_validate(data)

        return cls()

    def save(self, config_path: Path) -> None:
        """Save configuration to file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with config_path.open("w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)
