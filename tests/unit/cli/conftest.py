"""CLI fixtures: isolated data root, offline providers, cwd in tmp_path."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

import sourcehive.config as config_module
from sourcehive.config import load_config
from sourcehive.hive import SourceHive

DOCS = {
    "solar.txt": (
        "Solar panels convert sunlight into electricity. Modern panel efficiency "
        "has risen steadily and rooftop arrays now pay back within a decade."
    ),
    "battery.md": (
        "# Battery storage\n\nBattery storage capacity decides how much solar output "
        "remains usable at night. Lithium packs dominate home installations."
    ),
    "grid.html": (
        "<html><head><title>Grid balancing</title></head><body><main>"
        "<p>Grid operators balance solar peaks with storage and demand response.</p>"
        "</main></body></html>"
    ),
}


class CliEnv:
    """Handle on the isolated environment a CLI test runs in."""

    def __init__(self, root: Path, provider, embedder_cls) -> None:
        self.root = root
        self.provider = provider
        self._embedder_cls = embedder_cls

    @property
    def data_root(self) -> Path:
        return self.root / "data"

    @property
    def global_config(self) -> Path:
        return self.root / "home" / "config.yaml"

    def hive(self) -> SourceHive:
        """A hive on the same stores the CLI uses, for setup and inspection."""
        return SourceHive(
            load_config(), providers={"local": self.provider}, embedder=self._embedder_cls()
        )

    def write_docs(self) -> Path:
        docs = self.root / "docs"
        docs.mkdir(exist_ok=True)
        for name, text in DOCS.items():
            (docs / name).write_text(text, encoding="utf-8")
        return docs


@pytest.fixture
def cli_env(tmp_path, monkeypatch, make_provider, make_embedder):
    for key in list(os.environ):
        if key.startswith("SOURCEHIVE_"):
            monkeypatch.delenv(key)
    env = CliEnv(tmp_path, make_provider("local"), make_embedder)
    monkeypatch.setattr(config_module, "_GLOBAL_CONFIG_PATH", env.global_config)
    monkeypatch.setenv("SOURCEHIVE_DATA_ROOT", str(env.data_root))
    monkeypatch.setenv("SOURCEHIVE_ROUTING", "local_only")
    monkeypatch.chdir(tmp_path)

    def offline(cls, config):
        return cls(config, providers={"local": env.provider}, embedder=make_embedder())

    monkeypatch.setattr(SourceHive, "from_config", classmethod(offline))
    return env


@pytest.fixture
def session_id(cli_env):
    with cli_env.hive() as hive:
        return hive.sessions.create_session("Solar research").id
