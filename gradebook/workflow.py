"""
Report card review and publishing workflow.

    draft -> pending_review -> approved -> published -> archived

Every status change goes through transition(), which checks TRANSITIONS.
Comments can be edited in any status and never move the card.
"""
import logging

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_date

from .exceptions import BadRequest, NotFound
from .models import ReportCard

logger = logging.getLogger(__name__)

Status = ReportCard.Status

# action -> (allowed source statuses, target status)
TRANSITIONS = {
    'submit_for_review': ((Status.DRAFT,), Status.PENDING_REVIEW),
    'approve': ((Status.DRAFT, Status.PENDING_REVIEW, Status.APPROVED), Status.APPROVED),
    'publish': ((Status.APPROVED,), Status.PUBLISHED),
    'archive': ((Status.PUBLISHED,), Status.ARCHIVED),
}

COMMENT_FIELDS = ('class_teacher_comment', 'principal_comment', 'parent_comment')
DATE_FIELDS = ('next_term_opens', 'next_term_closes')


def can_transition(card, action):
    sources, _target = TRANSITIONS[action]
    return card.status in sources


def transition(card, action, **stamps):
    """Move card along TRANSITIONS and save it with the given field stamps."""
    sources, target = TRANSITIONS[action]
    if card.status not in sources:
        allowed = ', '.join(str(s.label).lower() for s in sources)
        raise BadRequest(
            f'Cannot {action.replace("_", " ")} a {card.get_status_display().lower()} '
            f'report card (must be {allowed})'
        )

    previous = card.status
    card.status = target
    for field, value in stamps.items():
        setattr(card, field, value)
    card.save(update_fields=['status', 'updated_at', *stamps])
    logger.info(f"Report card {card.report_number}: {previous} -> {target}")
    return card


def _locked(report_card_id):
    try:
        return ReportCard.objects.select_for_update().get(pk=report_card_id)
    except (ReportCard.DoesNotExist, ValidationError, ValueError):
        raise NotFound('Report card not found')


def _as_date(field, value):
    if isinstance(value, str):
        try:
            parsed = parse_date(value)
        except ValueError:
            parsed = None
        if parsed is None:
            raise BadRequest(f"Invalid date for {field}: {value}")
        return parsed
    return value


def submit_for_review(report_card_id):
    with transaction.atomic():
        card = _locked(report_card_id)
        return transition(card, 'submit_for_review')


def approve(report_card_id, user):
    with transaction.atomic():
        card = _locked(report_card_id)
        return transition(card, 'approve', approved_by=user, approved_at=timezone.now())


def publish(report_card_id):
    """Publish an approved card, making it visible to the student and parents."""
    with transaction.atomic():
        card = _locked(report_card_id)
        return transition(card, 'publish', published_at=timezone.now())


def archive(report_card_id):
    with transaction.atomic():
        card = _locked(report_card_id)
        return transition(card, 'archive', archived_at=timezone.now())


def update_comments(report_card_id, changes, user=None):
    """
    Update remarks and next-term dates on a card.

    Accepts class_teacher_comment, principal_comment, parent_comment,
    next_term_opens and next_term_closes; anything else is rejected. The
    author of a teacher or principal remark is recorded, and a parent comment
    marks the card as acknowledged.
    """
    unknown = set(changes) - set(COMMENT_FIELDS) - set(DATE_FIELDS)
    if unknown:
        raise BadRequest(f"Unknown fields: {', '.join(sorted(unknown))}")

    with transaction.atomic():
        card = _locked(report_card_id)
        update_fields = ['updated_at']

        for field, value in changes.items():
            if value is None:
                continue
            if field in DATE_FIELDS:
                value = _as_date(field, value)
            setattr(card, field, value)
            update_fields.append(field)

        if changes.get('class_teacher_comment') is not None and user is not None:
            card.class_teacher = user
            update_fields.append('class_teacher')
        if changes.get('principal_comment') is not None and user is not None:
            card.principal = user
            update_fields.append('principal')
        if changes.get('parent_comment'):
            card.parent_acknowledged_at = timezone.now()
            update_fields.append('parent_acknowledged_at')

        opens, closes = card.next_term_opens, card.next_term_closes
        if opens and closes and closes <= opens:
            raise BadRequest('Next term closing date must be after the opening date')

        card.save(update_fields=update_fields)

    return card


def update_subject_comment(report_card_id, subject_id, comment):
    """Set the teacher's comment on one subject result."""
    with transaction.atomic():
        card = _locked(report_card_id)
        result = card.get_subject_result(subject_id)
        if result is None:
            raise NotFound('Subject not found on this report card')

        result['teacher_comment'] = comment
        card.save(update_fields=['subject_results', 'updated_at'])

    return card


def bulk_publish(class_id, term_id):
    """
    Publish every approved card of a class for a term.

    Cards are published one at a time; a failure is recorded and the rest
    carry on.
    """
    cards = ReportCard.objects.filter(
        school_class_id=class_id,
        term_id=term_id,
        status=Status.APPROVED,
    ).only('id', 'report_number')

    outcome = {'total': 0, 'published': 0, 'errors': []}
    for card in cards:
        outcome['total'] += 1
        try:
            publish(card.pk)
            outcome['published'] += 1
        except Exception as e:
            logger.exception(f"Error publishing report card {card.report_number}")
            outcome['errors'].append({
                'report_card_id': str(card.pk),
                'report_number': card.report_number,
                'error': getattr(e, 'message', str(e)),
            })

    logger.info(f"Bulk publish for class {class_id}, term {term_id}: {outcome['published']}/{outcome['total']}")
    return outcome
