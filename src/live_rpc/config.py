"""Runtime configuration.

Settings come from constructor arguments or, via ``from_env``, from
environment variables:

    LIVE_RPC_BASE_PATH       Mount path of the RPC routes (default /rpc)
    LIVE_RPC_MAX_BATCH_SIZE  Batch size of the transport LiveRPC builds (default 10)
    LIVE_RPC_SCALAR_POLICY   immediate | batched (default immediate)
    LIVE_RPC_EVENT_NAME      Event name for updates (default update)
    LIVE_RPC_LOG_LEVEL       Logging level used by the CLI (default INFO)
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from .fanout import ScalarPolicy
from .transport import DEFAULT_MAX_BATCH_SIZE, UPDATE_EVENT

ENV_PREFIX = "LIVE_RPC_"


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ValueError(f"{name} must be at least 1, got {value}")
    return value


@dataclass
class LiveRPCConfig:
    """Server configuration."""

    base_path: str = "/rpc"
    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE
    scalar_policy: ScalarPolicy = ScalarPolicy.IMMEDIATE
    event_name: str = UPDATE_EVENT
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.base_path = "/" + self.base_path.strip("/") if self.base_path.strip("/") else ""
        self.scalar_policy = ScalarPolicy(self.scalar_policy)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> LiveRPCConfig:
        """Load configuration from environment variables."""
        env = os.environ if env is None else env

        policy_raw = env.get(f"{ENV_PREFIX}SCALAR_POLICY", ScalarPolicy.IMMEDIATE.value)
        try:
            policy = ScalarPolicy(policy_raw.strip().lower())
        except ValueError:
            choices = ", ".join(p.value for p in ScalarPolicy)
            raise ValueError(
                f"{ENV_PREFIX}SCALAR_POLICY must be one of {choices}, got {policy_raw!r}"
            ) from None

        return cls(
            base_path=env.get(f"{ENV_PREFIX}BASE_PATH", "/rpc"),
            max_batch_size=_env_int(env, f"{ENV_PREFIX}MAX_BATCH_SIZE", DEFAULT_MAX_BATCH_SIZE),
            scalar_policy=policy,
            event_name=env.get(f"{ENV_PREFIX}EVENT_NAME", UPDATE_EVENT),
            log_level=env.get(f"{ENV_PREFIX}LOG_LEVEL", "INFO").upper(),
        )
