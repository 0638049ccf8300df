"""
alignment_index.pipelines.registry — The ordered set of metric pipelines.

THIS IS THE ONLY PLACE where pipeline ids are bound to implementations.
The batch driver and the tests resolve pipelines through get_pipeline().

Design contract:
    - PIPELINES is ordered; batch runs follow this order.
    - get_pipeline() returns a fresh instance; pipelines hold no state.
    - No implicit state. No runtime modification of the registry.
"""

from __future__ import annotations

from alignment_index.pipeline import MetricPipeline
from alignment_index.pipelines.battle_deaths import BattleDeaths
from alignment_index.pipelines.coauthorship import ScientificCoauthorship
from alignment_index.pipelines.death_registration import DeathRegistration
from alignment_index.pipelines.firearms import FirearmStock
from alignment_index.pipelines.homicide import HomicideRate
from alignment_index.pipelines.internet_shutdowns import InternetShutdownDays
from alignment_index.pipelines.military_expenditure import MilitaryExpenditure
from alignment_index.pipelines.wdi_mean import ExtremePoverty, U5Mortality

PIPELINES: dict[str, type[MetricPipeline]] = {
    cls.id: cls
    for cls in (
        U5Mortality,
        ExtremePoverty,
        HomicideRate,
        BattleDeaths,
        InternetShutdownDays,
        MilitaryExpenditure,
        DeathRegistration,
        FirearmStock,
        ScientificCoauthorship,
    )
}


def list_pipeline_ids() -> list[str]:
    """Registered ids in run order."""
    return list(PIPELINES)


def get_pipeline(pipeline_id: str) -> MetricPipeline:
    """Instantiate a registered pipeline.

    Raises:
        KeyError: If the id is not registered. The message lists valid ids.
    """
    try:
        cls = PIPELINES[pipeline_id]
    except KeyError:
        raise KeyError(
            f"Unknown pipeline '{pipeline_id}'. Available: {list_pipeline_ids()}"
        ) from None
    return cls()
