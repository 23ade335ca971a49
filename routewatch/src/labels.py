from __future__ import annotations

from dataclasses import dataclass
from typing import Any

DEFAULT_LABEL_PREFIX = "routewatch.io/"


def _label_is_true(value: str | None) -> bool:
    return value is not None and value.strip().lower() == "true"


@dataclass(frozen=True)
class LabelSet:
    """Routing-relevant identity carried in a pod's labels."""

    app_name: str
    app_pool: str
    is_deploy: bool
    is_isolated_run: bool

    @classmethod
    def from_meta(cls, metadata: Any, prefix: str = DEFAULT_LABEL_PREFIX) -> LabelSet:
        labels = getattr(metadata, "labels", None) or {}
        return cls(
            app_name=labels.get(f"{prefix}app-name", ""),
            app_pool=labels.get(f"{prefix}app-pool", ""),
            is_deploy=_label_is_true(labels.get(f"{prefix}is-deploy")),
            is_isolated_run=_label_is_true(labels.get(f"{prefix}is-isolated-run")),
        )
