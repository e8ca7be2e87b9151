import json
from functools import lru_cache

from pydantic import ValidationError

from pipelink.bootstrap.config.settings import PipeLinkConfig


@lru_cache
def get_config() -> PipeLinkConfig:
    try:
        return PipeLinkConfig()  # type: ignore[call-arg]
    except FileNotFoundError as ex:
        raise SystemExit(f"Provide a correct configuration file path: {ex}")
    except ValidationError as ex:
        msg = ["Configuration validation failed:"]
        errs = json.loads(ex.json())
        for err in errs:
            msg.append(f"  {'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}")
        raise SystemExit("\n".join(msg))
