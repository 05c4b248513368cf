"""
Pure grade calculations: subject aggregation, cohort ranking and the
report-card summary. Nothing here touches the database, so a whole class can
be computed from one prefetched snapshot.
"""
from collections import namedtuple
from decimal import Decimal

from .grading import quantize, resolve_grade, calculate_mean_grade

DEFAULT_EXAM_WEIGHT = Decimal('100')

ScoreRecord = namedtuple('ScoreRecord', [
    'exam_id', 'exam_name', 'exam_type', 'subject_id',
    'marks_obtained', 'total_marks', 'percentage', 'weight',
    'is_absent', 'is_exempted',
])


def _number(value):
    """JSON-friendly number: ints stay ints, everything else becomes a float."""
    if value is None or isinstance(value, int):
        return value
    return float(value)


def effective_weight(weight):
    """An exam without a weight (or a zero weight) counts as 100."""
    if not weight:
        return DEFAULT_EXAM_WEIGHT
    return Decimal(str(weight))


def is_gradable(record):
    return not record.is_absent and not record.is_exempted


def aggregate_subject(records, curriculum_id, subject_id=None, subject_name='', subject_code=''):
    """
    Combine one student's results for one subject into a subject result.

    Absent and exempted records are dropped before weighting. Returns None
    when nothing gradable is left, so the subject is left off the report.
    """
    valid = [r for r in records if is_gradable(r)]
    if not valid:
        return None

    weighted_sum = Decimal('0')
    total_weight = Decimal('0')
    exams = []

    for record in valid:
        weight = effective_weight(record.weight)
        percentage = Decimal(str(record.percentage))
        weighted_sum += percentage * weight
        total_weight += weight

        exams.append({
            'exam_id': str(record.exam_id),
            'exam_name': record.exam_name,
            'exam_type': record.exam_type,
            'marks_obtained': _number(record.marks_obtained),
            'total_marks': _number(record.total_marks),
            'percentage': _number(quantize(percentage)),
            'weight': _number(weight),
        })

    average = quantize(weighted_sum / total_weight)
    grade_band = resolve_grade(average, curriculum_id)

    return {
        'subject_id': str(subject_id if subject_id is not None else valid[0].subject_id),
        'subject_name': subject_name,
        'subject_code': subject_code,
        'exams': exams,
        'average_percentage': _number(average),
        'final_grade': grade_band.grade,
        'grade_points': _number(grade_band.points),
        'grade_description': grade_band.description,
    }


def overall_percentage(subject_results):
    """Unweighted mean of the subject averages (each subject counts once)."""
    if not subject_results:
        return Decimal('0.00')
    total = sum(Decimal(str(r['average_percentage'])) for r in subject_results)
    return quantize(total / len(subject_results))


def rank_cohort(entries):
    """
    Competition ranking of a cohort by average, highest first.

    entries: iterable of {'student_id', 'average'}. Tied averages share a rank
    and the next distinct average is ranked 1 + the number of students above
    it (90, 90, 80 -> 1, 1, 3).
    """
    ordered = sorted(
        entries,
        key=lambda e: (-Decimal(str(e['average'])), str(e['student_id']))
    )

    ranking = []
    rank = 0
    last_average = None
    for position, entry in enumerate(ordered, 1):
        average = Decimal(str(entry['average']))
        if average != last_average:
            rank = position
        last_average = average
        ranking.append({
            'student_id': entry['student_id'],
            'average': entry['average'],
            'rank': rank,
        })

    return ranking


def rank_suffix(rank):
    """Ordinal form of a rank: 1st, 2nd, 3rd, 4th, 11th, 12th, 13th, 21st."""
    if 11 <= rank % 100 <= 13:
        return f"{rank}th"
    suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(rank % 10, 'th')
    return f"{rank}{suffix}"


def build_summary(subject_results, curriculum_id, class_rank, class_size):
    """Report-card summary for one student's subject results."""
    percentage = overall_percentage(subject_results)
    overall_band = resolve_grade(percentage, curriculum_id)
    total_obtained = sum(Decimal(str(r['average_percentage'])) for r in subject_results)

    summary = {
        'total_subjects': len(subject_results),
        'total_marks_obtained': _number(quantize(total_obtained)),
        'total_marks_possible': len(subject_results) * 100,
        'overall_percentage': _number(percentage),
        'overall_grade': overall_band.grade,
        'total_points': sum(r['grade_points'] for r in subject_results),
        'class_rank': class_rank,
        'class_rank_suffix': rank_suffix(class_rank) if class_rank else '-',
        'class_size': class_size,
    }

    mean = calculate_mean_grade([r['grade_points'] for r in subject_results], curriculum_id)
    if mean is not None:
        summary['mean_grade'] = mean['mean_grade']
        summary['mean_points'] = _number(mean['mean_points'])

    return summary
