from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from jobscope.config import AppConfig, get_config
from jobscope.core.database import get_db
from jobscope.services.queue_depth import QueueDepthProbe, get_queue_depth_probe

# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
Config = Annotated[AppConfig, Depends(get_config)]


def get_probe(config: Config) -> QueueDepthProbe:
    return get_queue_depth_probe(config)


Probe = Annotated[QueueDepthProbe, Depends(get_probe)]
