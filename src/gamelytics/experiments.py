"""Experiment evaluation: compare mastery between control and treatment groups."""

import logging
from typing import Iterable

from pydantic import BaseModel, ConfigDict

from .analyzer import DecisionAnalyzer, population_thinking_times
from .models import DecisionEvent, ExperimentConfig

logger = logging.getLogger(__name__)


class GroupResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    users: int = 0  # users with at least one qualifying decision
    decisions: int = 0
    mean_score: float | None = None


class ExperimentReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    experiment_id: str
    status: str
    control: GroupResult
    treatment: GroupResult
    effect: float | None = None  # treatment - control


def _in_scope(event: DecisionEvent, config: ExperimentConfig) -> bool:
    if config.target_games and event.game_id not in config.target_games:
        return False
    if config.target_r_types and event.r_type not in config.target_r_types:
        return False
    if config.start_date is not None and event.timestamp < config.start_date:
        return False
    if config.end_date is not None and event.timestamp > config.end_date:
        return False
    return True


def evaluate_experiment(
    config: ExperimentConfig,
    events: Iterable[DecisionEvent],
    analyzer: DecisionAnalyzer | None = None,
) -> ExperimentReport:
    """Mean mastery score per group over the experiment's games and rule types.

    Each user's score is computed from their in-scope decisions; the group
    score is the mean over users. ``effect`` is None unless both groups have
    data.
    """
    analyzer = analyzer or DecisionAnalyzer()
    scoped = [e for e in events if _in_scope(e, config)]
    population = population_thinking_times(scoped)

    def _group_result(members: tuple[str, ...]) -> GroupResult:
        member_set = set(members)
        by_user: dict[str, list[DecisionEvent]] = {}
        for event in scoped:
            if event.user_id in member_set:
                by_user.setdefault(event.user_id, []).append(event)
        if not by_user:
            return GroupResult()
        scores = [analyzer.score(user_events, population) for user_events in by_user.values()]
        return GroupResult(
            users=len(by_user),
            decisions=sum(len(v) for v in by_user.values()),
            mean_score=sum(scores) / len(scores),
        )

    control = _group_result(config.control_group)
    treatment = _group_result(config.treatment_group)

    effect = None
    if control.mean_score is not None and treatment.mean_score is not None:
        effect = treatment.mean_score - control.mean_score
    else:
        logger.info(f"Experiment {config.id}: not enough data to compare groups")

    return ExperimentReport(
        experiment_id=config.id,
        status=config.status,
        control=control,
        treatment=treatment,
        effect=effect,
    )
