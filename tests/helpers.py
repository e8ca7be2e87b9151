import asyncio
import os
from typing import Callable

from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, YamlConfigSettingsSource

from pipelink.bootstrap.config.settings import PipeLinkConfig


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout=timeout)


class FakePipeLinkConfig(PipeLinkConfig, BaseSettings):
    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (YamlConfigSettingsSource(settings_cls, yaml_file=os.environ["TEST_PIPELINKCONFIG"]),)
