# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Client loader state: required capabilities plus configuration values.

``ClientRuntime`` is the per-document record of which loader modules the
page needs and what they are configured with.  ``configure_client`` fills it
from the page-wide settings; the pipeline adds per-document values (the
descriptor list, concat indexes, debug references) later.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .config import AsyncExec, AsyncExecType, LoadPosition, LocalStorageConfig, ScriptFlowConfig
from .wire import ASYNC_EXEC_KEY_INDEX, ASYNC_EXEC_TYPE_INDEX, LOAD_POSITION_INDEX, encode_async_exec

# exec type -> loader module it needs
EXEC_CAPABILITIES: dict[AsyncExecType, str] = {
    AsyncExecType.INVIEW: "inview",
    AsyncExecType.MEDIA: "responsive",
}


@dataclass
class ClientRuntime:
    """Ordered set of loader modules and a flat config mapping."""

    modules: list[str] = field(default_factory=list)
    config: dict[str, Any] = field(default_factory=dict)

    def load_module(self, name: str) -> None:
        if name not in self.modules:
            self.modules.append(name)

    def set_config(self, key: str, value: Any) -> None:
        self.config[key] = value

    def to_dict(self) -> dict[str, Any]:
        return {"modules": list(self.modules), "config": dict(self.config)}


@dataclass(frozen=True, slots=True)
class PageDefaults:
    """Page-wide async policy.  Descriptor fields equal to these are omitted."""

    load_async: bool = False
    load_position: LoadPosition = LoadPosition.HEADER
    rel_preload: bool = False
    async_exec: AsyncExec | None = None
    local_storage: LocalStorageConfig | None = None

    @classmethod
    def from_config(cls, config: ScriptFlowConfig) -> PageDefaults:
        a = config.async_
        return cls(
            load_async=a.enabled,
            load_position=a.load_position,
            rel_preload=a.rel_preload,
            async_exec=a.exec_,
            local_storage=a.local_storage,
        )


def timing_config(spec: AsyncExec) -> list[Any]:
    """Compressed load/exec timing: ``[type_index, {key_index: value}]``.

    Only non-default options are emitted (frame > 1, numeric timeouts,
    non-empty selector or media, offset > 0).
    """
    options: dict[str, Any] = {}
    match spec.type:
        case AsyncExecType.ANIMATION_FRAME:
            if spec.frame is not None and spec.frame > 1:
                options["frame"] = spec.frame
        case AsyncExecType.IDLE:
            if spec.timeout is not None:
                options["timeout"] = spec.timeout
            if spec.set_timeout is not None:
                options["setTimeout"] = spec.set_timeout
        case AsyncExecType.INVIEW:
            if spec.selector:
                options["selector"] = spec.selector
            if spec.offset is not None and spec.offset > 0:
                options["offset"] = spec.offset
        case AsyncExecType.MEDIA:
            if spec.media:
                options["media"] = spec.media
    return [ASYNC_EXEC_TYPE_INDEX[spec.type], {str(ASYNC_EXEC_KEY_INDEX[k]): v for k, v in options.items()}]


def register_exec_capability(client: ClientRuntime, spec: AsyncExec | None) -> None:
    if spec is not None and spec.type in EXEC_CAPABILITIES:
        client.load_module(EXEC_CAPABILITIES[spec.type])


def configure_client(client: ClientRuntime, config: ScriptFlowConfig) -> None:
    """Register capabilities and page-wide values implied by *config*."""
    client.load_module("js")
    a = config.async_
    if not a.enabled:
        return

    client.set_config("async", True)
    if a.jquery_stub:
        client.load_module("jquery-stub")

    if a.load_position == LoadPosition.TIMED:
        client.load_module("timed-exec")
        client.set_config("load_position", LOAD_POSITION_INDEX[LoadPosition.TIMED])
        if a.load_timing is not None:
            register_exec_capability(client, a.load_timing)
            client.set_config("load_timing", timing_config(a.load_timing))

    if a.exec_timing is not None:
        client.load_module("timed-exec")
        register_exec_capability(client, a.exec_timing)
        client.set_config("exec_timing", timing_config(a.exec_timing))

    if a.exec_ is not None:
        register_exec_capability(client, a.exec_)
        client.set_config("async_exec", encode_async_exec(a.exec_))

    if a.local_storage is not None:
        client.load_module("localstorage")
        client.set_config("localStorage", True)
        ls = a.local_storage
        for key in ("max_size", "update_interval", "expire"):
            value = getattr(ls, key)
            if value is not None:
                client.set_config(f"localStorage_{key}", value)
        if ls.head_update:
            client.set_config("localStorage_head_update", 1)
