"""Response Aggregator - Stage 1 of the lens pipeline.

Turns Likert responses into raw per-factor scores by summing
``response x loading`` over every question that loads a factor.
"""

import logging
from collections.abc import Mapping

from lens_catalog.errors import InvalidInputError

from .schema import FactorScores, LensDefinition

logger = logging.getLogger(__name__)


class ResponseAggregator:
    """Aggregates questionnaire responses for one lens."""

    def __init__(self, lens: LensDefinition):
        self.lens = lens
        self._question_ids = {q.id for q in lens.questions}

    def validate(self, responses: Mapping[str, object]) -> None:
        """Raise InvalidInputError for the first malformed response."""
        scale = self.lens.scale
        for question_id, value in responses.items():
            if question_id not in self._question_ids:
                raise InvalidInputError(
                    f"Unknown question for lens {self.lens.version.value}: {question_id}",
                    question_id=question_id,
                    value=value,
                )
            # bool is an int subclass but never a Likert answer
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidInputError(
                    f"Response to {question_id} must be an integer, got {value!r}",
                    question_id=question_id,
                    value=value,
                )
            if not scale.contains(value):
                raise InvalidInputError(
                    f"Response to {question_id} is outside {scale.minimum}..{scale.maximum}: {value}",
                    question_id=question_id,
                    value=value,
                )

    def aggregate(self, responses: Mapping[str, object]) -> FactorScores:
        self.validate(responses)

        scores = {factor_id: 0.0 for factor_id in self.lens.factor_ids}
        # Lens question order keeps float summation order fixed
        for question in self.lens.questions:
            if question.id not in responses:
                continue
            value = responses[question.id]
            for factor_id, loading in question.loadings.items():
                scores[factor_id] += value * loading

        logger.debug(
            "Aggregated %d/%d responses for lens %s",
            len(responses),
            len(self.lens.questions),
            self.lens.version.value,
        )
        return FactorScores(lens=self.lens.version, scores=scores)


def aggregate_responses(responses: Mapping[str, object], lens: LensDefinition) -> FactorScores:
    """Aggregate responses into raw factor scores.

    Unanswered questions contribute nothing; every factor of the lens is
    present in the result, zero where no answered question loads it.
    """
    return ResponseAggregator(lens).aggregate(responses)
