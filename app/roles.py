from __future__ import annotations

from dataclasses import dataclass

SUPPORTED_ROLES = (
    "api",
    "worker-deliver",
)
WORKER_ROLES = frozenset({"worker-deliver"})


@dataclass(frozen=True)
class RuntimeRole:
    name: str

    @property
    def runs_worker(self) -> bool:
        return self.name in WORKER_ROLES


def validate_role(role: str) -> RuntimeRole:
    if role in SUPPORTED_ROLES:
        return RuntimeRole(name=role)

    supported = ", ".join(SUPPORTED_ROLES)
    raise ValueError(
        f"Unsupported role '{role}'. Supported roles: {supported}. "
        "Note: migrator is external and not an app role."
    )
