"""
Curriculum grading rules.

A curriculum is pure data: an ordered table of closed percentage bands (highest
band first) and, optionally, a best-N mean-grade rule with its own coarser
table of point thresholds. Calling code only ever passes a curriculum id; new
curricula are added with register_curriculum() or the
GRADEBOOK_EXTRA_CURRICULA setting.
"""
import logging
from collections import namedtuple
from decimal import Decimal, ROUND_HALF_UP

from . import config
from .exceptions import UnknownCurriculum

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')
MAX_PERCENTAGE = Decimal('100.00')
MIN_PERCENTAGE = Decimal('0.00')

GradeBand = namedtuple(
    'GradeBand', ['grade', 'min_percentage', 'max_percentage', 'points', 'description']
)

# bands: ((min_points, grade), ...) highest first; the last entry is the floor
MeanGradeRule = namedtuple('MeanGradeRule', ['best_of', 'bands'])

Curriculum = namedtuple('Curriculum', ['id', 'label', 'scale', 'mean_grade_rule'])


def quantize(value):
    """Round a number to 2 decimal places (half up) as a Decimal."""
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def band(grade, min_percentage, max_percentage, points, description=''):
    """Build a GradeBand from plain numbers."""
    return GradeBand(
        grade,
        quantize(min_percentage),
        quantize(max_percentage),
        points,
        description,
    )


# 12-point letter scale (8-4-4 system)
SCALE_8_4_4 = (
    band('A', 80, 100, 12, 'Excellent'),
    band('A-', 75, 79.99, 11, 'Very Good'),
    band('B+', 70, 74.99, 10, 'Good'),
    band('B', 65, 69.99, 9, 'Good'),
    band('B-', 60, 64.99, 8, 'Fairly Good'),
    band('C+', 55, 59.99, 7, 'Average'),
    band('C', 50, 54.99, 6, 'Average'),
    band('C-', 45, 49.99, 5, 'Below Average'),
    band('D+', 40, 44.99, 4, 'Below Average'),
    band('D', 35, 39.99, 3, 'Weak'),
    band('D-', 30, 34.99, 2, 'Weak'),
    band('E', 0, 29.99, 1, 'Very Weak'),
)

MEAN_GRADE_8_4_4 = MeanGradeRule(
    best_of=7,
    bands=(
        (Decimal('11.5'), 'A'),
        (Decimal('10.5'), 'A-'),
        (Decimal('9.5'), 'B+'),
        (Decimal('8.5'), 'B'),
        (Decimal('7.5'), 'B-'),
        (Decimal('6.5'), 'C+'),
        (Decimal('5.5'), 'C'),
        (Decimal('4.5'), 'C-'),
        (Decimal('3.5'), 'D+'),
        (Decimal('2.5'), 'D'),
        (Decimal('1.5'), 'D-'),
        (Decimal('0'), 'E'),
    ),
)

# 4-level competency scale (CBC)
SCALE_CBC = (
    band('EE', 80, 100, 4, 'Exceeds Expectations'),
    band('ME', 65, 79.99, 3, 'Meets Expectations'),
    band('AE', 50, 64.99, 2, 'Approaching Expectations'),
    band('BE', 0, 49.99, 1, 'Below Expectations'),
)

# International letter grades (Cambridge)
SCALE_CAMBRIDGE = (
    band('A*', 90, 100, 9, 'Outstanding'),
    band('A', 80, 89.99, 8, 'Excellent'),
    band('B', 70, 79.99, 7, 'Very Good'),
    band('C', 60, 69.99, 6, 'Good'),
    band('D', 50, 59.99, 5, 'Satisfactory'),
    band('E', 40, 49.99, 4, 'Sufficient'),
    band('F', 30, 39.99, 3, 'Low'),
    band('G', 20, 29.99, 2, 'Very Low'),
    band('U', 0, 19.99, 0, 'Ungraded'),
)


_REGISTRY = {}


def validate_scale(scale):
    """
    Check that a band table is usable for lookup.

    Returns a list of problems (empty when the table is ordered highest
    first, has no overlaps or gaps at 0.01 resolution and spans 0-100).
    """
    problems = []
    if not scale:
        return ['Scale has no bands']

    for item in scale:
        if item.min_percentage > item.max_percentage:
            problems.append(f"{item.grade}: minimum is above maximum")

    if scale[0].max_percentage != MAX_PERCENTAGE:
        problems.append(f"Top band {scale[0].grade} does not reach 100")
    if scale[-1].min_percentage != MIN_PERCENTAGE:
        problems.append(f"Bottom band {scale[-1].grade} does not start at 0")

    for higher, lower in zip(scale, scale[1:]):
        if lower.max_percentage >= higher.min_percentage:
            problems.append(f"{lower.grade} overlaps or is ordered above {higher.grade}")
        elif higher.min_percentage - lower.max_percentage != TWO_PLACES:
            problems.append(f"Gap between {lower.grade} and {higher.grade}")

    return problems


def register_curriculum(curriculum_id, scale, mean_grade_rule=None, label=''):
    """
    Register (or replace) a curriculum's grading rules.

    Raises ValueError when the scale is not exhaustive and non-overlapping.
    """
    scale = tuple(sorted(scale, key=lambda b: b.min_percentage, reverse=True))
    problems = validate_scale(scale)
    if problems:
        raise ValueError(f"Invalid scale for {curriculum_id}: {'; '.join(problems)}")

    curriculum = Curriculum(curriculum_id, label or curriculum_id, scale, mean_grade_rule)
    _REGISTRY[curriculum_id] = curriculum
    return curriculum


def _register_from_settings(curriculum_id, definition):
    """Build a curriculum from a GRADEBOOK_EXTRA_CURRICULA entry."""
    scale = [band(*row) for row in definition['scale']]
    rule = None
    if definition.get('mean_grade_rule'):
        raw = definition['mean_grade_rule']
        rule = MeanGradeRule(
            best_of=int(raw['best_of']),
            bands=tuple((Decimal(str(points)), grade) for points, grade in raw['bands']),
        )
    logger.info(f"Registering curriculum {curriculum_id} from settings")
    return register_curriculum(curriculum_id, scale, rule, label=definition.get('label', ''))


def get_curriculum(curriculum_id):
    """Look up a curriculum by id, loading settings-defined ones on first use."""
    curriculum = _REGISTRY.get(curriculum_id)
    if curriculum is not None:
        return curriculum

    definition = config.EXTRA_CURRICULA.get(curriculum_id)
    if definition:
        return _register_from_settings(curriculum_id, definition)

    raise UnknownCurriculum(f"Unknown curriculum '{curriculum_id}'")


def available_curricula():
    """Ids of all registered and configured curricula."""
    ids = set(_REGISTRY) | set(config.EXTRA_CURRICULA)
    return sorted(ids)


def resolve_grade(percentage, curriculum_id):
    """
    Map a percentage to the curriculum band containing it.

    The percentage is rounded to 2 dp first. A value that matches no band
    falls back to the lowest band instead of raising.
    """
    scale = get_curriculum(curriculum_id).scale
    value = quantize(percentage)

    for grade_band in scale:
        if grade_band.min_percentage <= value <= grade_band.max_percentage:
            return grade_band

    logger.warning(
        f"No {curriculum_id} band contains {value}%, using lowest band {scale[-1].grade}"
    )
    return scale[-1]


def calculate_mean_grade(points, curriculum_id):
    """
    Best-N mean grade for curricula that define one.

    Returns {'mean_points', 'mean_grade'} or None when the curriculum has no
    best-N rule.
    """
    rule = get_curriculum(curriculum_id).mean_grade_rule
    if rule is None:
        return None

    best = sorted((Decimal(str(p)) for p in points), reverse=True)[:rule.best_of]
    mean = sum(best) / len(best) if best else Decimal('0')

    mean_grade = rule.bands[-1][1]
    for min_points, grade in rule.bands:
        if mean >= min_points:
            mean_grade = grade
            break

    return {'mean_points': quantize(mean), 'mean_grade': mean_grade}


register_curriculum('8-4-4', SCALE_8_4_4, MEAN_GRADE_8_4_4, label='8-4-4 (12-point scale)')
register_curriculum('CBC', SCALE_CBC, label='Competency Based Curriculum')
register_curriculum('CAMBRIDGE', SCALE_CAMBRIDGE, label='Cambridge International')
