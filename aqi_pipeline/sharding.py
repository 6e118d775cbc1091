#file: aqi_pipeline/sharding.py

import math
from typing import Sequence, TypeVar

from aqi_pipeline.models import TriggerKind

T = TypeVar("T")


def select_shard(entities: Sequence[T], trigger: TriggerKind, hour: int, shard_count: int = 2) -> list[T]:
    """
    Entities to process this invocation.

    Manual and startup triggers take everything. Scheduled triggers split the
    list into shard_count contiguous chunks of ceil(n / shard_count) and take
    chunk hour % shard_count, so every entity is covered within shard_count
    consecutive hours. With two shards even hours take the first half.
    """
    if not 0 <= hour <= 23:
        raise ValueError(f"hour must be in 0..23, got {hour}")
    if trigger is not TriggerKind.SCHEDULED or shard_count <= 1:
        return list(entities)

    size = math.ceil(len(entities) / shard_count)
    index = hour % shard_count
    return list(entities[index * size:(index + 1) * size])
