from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_core.core_schema import ValidationInfo
from pydantic_settings import BaseSettings, SettingsConfigDict, PydanticBaseSettingsSource, YamlConfigSettingsSource

from pipelink.bootstrap.config.loader import get_configfile
from pipelink.core.models.config import ChannelConfig, PoolConfig


class EndpointSettings(BaseModel):
    name: Annotated[
        str,
        Field(
            description=(
                "Name of the endpoint, unique on the local host.\n"
                "The server publishes it and clients connect with the same name.\n"
                "It must not contain path separators."
            ),
            min_length=1,
        )
    ]

    socket_dir: Annotated[
        Path | None,
        Field(
            description=(
                "Directory holding the endpoint socket.\n"
                "Defaults to $XDG_RUNTIME_DIR, or the system temporary directory."
            ),
            default=None
        )
    ]

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str, _: ValidationInfo) -> str:
        if "/" in v or "\\" in v or v.strip() != v:
            raise ValueError(f"Endpoint name {v!r} must not contain path separators or padding.")
        return v

    @field_validator("socket_dir")
    @classmethod
    def validate_socket_dir(cls, v: Path | None, _: ValidationInfo) -> Path | None:
        if v is not None and not v.is_dir():
            raise ValueError(f"Socket directory {v} does not exist.")
        return v


class PoolSettings(BaseModel):
    max_instances: Annotated[
        int,
        Field(
            description="Maximum number of concurrent server channels (listening or connected).",
            default=10,
            ge=1
        )
    ]

    listeners: Annotated[
        int,
        Field(
            description="Number of listening channels armed when the server starts.",
            default=1,
            ge=1
        )
    ]

    rearm_listeners: Annotated[
        bool,
        Field(
            description=(
                "Arm a new listening channel whenever one is taken by a client,\n"
                "and after a disconnect frees capacity that was exhausted."
            ),
            default=False
        )
    ]

    backlog: Annotated[
        int,
        Field(
            description="Maximum number of accepted connections waiting for a listening channel.",
            default=16,
            ge=0
        )
    ]


class ChannelSettings(BaseModel):
    buffer_size: Annotated[
        int,
        Field(
            description="Size of the fixed read buffer, in bytes.",
            default=2048,
            gt=0
        )
    ]

    max_message_size: Annotated[
        int,
        Field(
            description="Maximum allowed size of a single encoded message, in bytes.",
            default=1 * 1024 * 1024,
            gt=0
        )
    ]

    connect_timeout: Annotated[
        float,
        Field(
            description="Maximum time a client waits for the endpoint, in seconds.",
            default=300.0,
            gt=0
        )
    ]

    drain_timeout: Annotated[
        float,
        Field(
            description="Maximum time allowed to flush outbound data on stop, in seconds.",
            default=5.0,
            gt=0
        )
    ]


class PipeLinkConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PIPELINK_",
        extra="allow"
    )

    endpoint: Annotated[
        EndpointSettings,
        Field(description="Endpoint naming configuration.")
    ]

    pool: Annotated[
        PoolSettings,
        Field(
            description=(
                "Connection pool configuration.\n"
                "Controls how many clients may be attached at once and how\n"
                "listening channels are armed and re-armed."
            ),
            default_factory=PoolSettings
        )
    ]

    channel: Annotated[
        ChannelSettings,
        Field(
            description="Per-channel framing, buffering and timeout configuration.",
            default_factory=ChannelSettings
        )
    ]

    delivery: Annotated[
        Literal["loop", "inline", "executor"],
        Field(
            description=(
                "Where connection, disconnection and message events are delivered:\n"
                "loop     → posted to the server's event loop (default).\n"
                "inline   → called directly from the connection's read loop.\n"
                "executor → posted to a dedicated worker thread."
            ),
            default="loop"
        )
    ]

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (YamlConfigSettingsSource(settings_cls, yaml_file=get_configfile()),)

    def to_channel_config(self) -> ChannelConfig:
        return ChannelConfig(
            buffer_size=self.channel.buffer_size,
            max_message_size=self.channel.max_message_size,
            connect_timeout=self.channel.connect_timeout,
            drain_timeout=self.channel.drain_timeout,
            socket_dir=self.endpoint.socket_dir,
        )

    def to_pool_config(self) -> PoolConfig:
        return PoolConfig(
            name=self.endpoint.name,
            max_instances=self.pool.max_instances,
            rearm_listeners=self.pool.rearm_listeners,
            backlog=self.pool.backlog,
            channel=self.to_channel_config(),
        )
