import logging

from django.http import HttpResponse, JsonResponse
from django.views.decorators.http import require_GET, require_POST, require_http_methods

from .base import (
    admin_required, api_view, as_bool, is_school_admin, is_teacher_or_admin, json_body,
    login_required, teacher_or_admin_required,
)
from .. import services, workflow
from ..exceptions import BadRequest
from ..grading import available_curricula
from ..rendering import export_class_broadsheet, generate_pdf

logger = logging.getLogger(__name__)

WORKBOOK_CONTENT_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def _isoformat(value):
    return value.isoformat() if value else None


def serialize_report_card(card, detail=True):
    data = {
        'id': str(card.pk),
        'report_number': card.report_number,
        'student_id': card.student_id,
        'student_name': card.student.full_name,
        'admission_number': card.student.admission_number,
        'class_id': card.school_class_id,
        'class_name': card.school_class.name,
        'term_id': card.term_id,
        'academic_year_id': card.academic_year_id,
        'curriculum': card.curriculum,
        'status': card.status,
        'summary': card.summary,
        'has_pdf': card.has_document,
        'created_at': _isoformat(card.created_at),
        'updated_at': _isoformat(card.updated_at),
    }
    if detail:
        data.update({
            'subject_results': card.subject_results,
            'attendance': {
                'days_present': card.days_present,
                'days_absent': card.days_absent,
                'total_school_days': card.total_school_days,
            },
            'fee_balance': float(card.fee_balance) if card.fee_balance is not None else None,
            'class_teacher_comment': card.class_teacher_comment,
            'principal_comment': card.principal_comment,
            'parent_comment': card.parent_comment,
            'parent_acknowledged_at': _isoformat(card.parent_acknowledged_at),
            'next_term_opens': _isoformat(card.next_term_opens),
            'next_term_closes': _isoformat(card.next_term_closes),
            'pdf_generated_at': _isoformat(card.pdf_generated_at),
            'approved_at': _isoformat(card.approved_at),
            'published_at': _isoformat(card.published_at),
            'archived_at': _isoformat(card.archived_at),
        })
    return data


def _required(data, *names):
    missing = [name for name in names if not data.get(name)]
    if missing:
        raise BadRequest(f"Missing required fields: {', '.join(missing)}")
    return [data[name] for name in names]


@login_required
@require_GET
def curricula(request):
    return JsonResponse({'curricula': available_curricula()})


@admin_required
@require_POST
@api_view
def generate(request):
    """Generate (or regenerate) one student's report card."""
    data = json_body(request)
    student_id, term_id = _required(data, 'student_id', 'term_id')

    card = services.generate_report_card(
        student_id,
        term_id,
        curriculum=data.get('curriculum'),
        include_fee_balance=as_bool(data.get('include_fee_balance', False)),
        regenerate=as_bool(data.get('regenerate', False)),
        generated_by=request.user,
    )
    return JsonResponse(serialize_report_card(card), status=201)


@admin_required
@require_POST
@api_view
def bulk_generate(request):
    """
    Generate report cards for every active student of a class.

    With "background": true the work is queued and the task id returned.
    """
    data = json_body(request)
    class_id, term_id = _required(data, 'class_id', 'term_id')
    options = {
        'curriculum': data.get('curriculum'),
        'include_fee_balance': as_bool(data.get('include_fee_balance', False)),
        'regenerate': as_bool(data.get('regenerate', False)),
    }

    if as_bool(data.get('background', False)):
        from ..tasks import bulk_generate_report_cards_task

        task = bulk_generate_report_cards_task.delay(
            class_id, term_id, request.tenant.schema_name,
            generated_by_id=request.user.pk, **options
        )
        return JsonResponse({'task_id': task.id}, status=202)

    outcome = services.bulk_generate_report_cards(
        class_id, term_id, generated_by=request.user, **options
    )
    return JsonResponse(outcome)


@login_required
@require_GET
@api_view
def report_card_list(request):
    qs = services.report_card_queryset(
        student=request.GET.get('student_id'),
        school_class=request.GET.get('class_id'),
        term=request.GET.get('term_id'),
        academic_year=request.GET.get('academic_year_id'),
        status=request.GET.get('status'),
        user=request.user,
    )
    cards = [serialize_report_card(card, detail=False) for card in qs]
    return JsonResponse({'count': len(cards), 'results': cards})


@login_required
@require_http_methods(['GET', 'DELETE'])
@api_view
def report_card_detail(request, pk):
    if request.method == 'DELETE':
        if not is_school_admin(request.user):
            return JsonResponse({'error': 'Only school administrators can do this'}, status=403)
        services.delete_report_card(pk)
        return JsonResponse({'deleted': True})

    card = services.get_report_card(pk, user=request.user)
    return JsonResponse(serialize_report_card(card))


@login_required
@require_POST
@api_view
def update_comments(request, pk):
    """
    Update remarks on a card.

    Staff may edit every remark and the next-term dates; a parent or student
    may only leave a parent comment on a card they can see.
    """
    data = json_body(request)

    if not is_teacher_or_admin(request.user):
        services.get_report_card(pk, user=request.user)
        if set(data) - {'parent_comment'}:
            return JsonResponse({'error': 'Only the parent comment can be changed'}, status=403)

    card = workflow.update_comments(pk, data, user=request.user)
    return JsonResponse(serialize_report_card(services.get_report_card(card.pk)))


@teacher_or_admin_required
@require_POST
@api_view
def update_subject_comment(request, pk, subject_id):
    data = json_body(request)
    if 'comment' not in data:
        raise BadRequest('Missing required fields: comment')

    card = workflow.update_subject_comment(pk, subject_id, data['comment'])
    return JsonResponse(serialize_report_card(services.get_report_card(card.pk)))


@teacher_or_admin_required
@require_POST
@api_view
def submit_for_review(request, pk):
    card = workflow.submit_for_review(pk)
    return JsonResponse(serialize_report_card(services.get_report_card(card.pk), detail=False))


@admin_required
@require_POST
@api_view
def approve(request, pk):
    card = workflow.approve(pk, request.user)
    return JsonResponse(serialize_report_card(services.get_report_card(card.pk), detail=False))


@admin_required
@require_POST
@api_view
def publish(request, pk):
    card = workflow.publish(pk)
    return JsonResponse(serialize_report_card(services.get_report_card(card.pk), detail=False))


@admin_required
@require_POST
@api_view
def archive(request, pk):
    card = workflow.archive(pk)
    return JsonResponse(serialize_report_card(services.get_report_card(card.pk), detail=False))


@admin_required
@require_POST
@api_view
def bulk_publish(request):
    data = json_body(request)
    class_id, term_id = _required(data, 'class_id', 'term_id')

    if as_bool(data.get('background', False)):
        from ..tasks import bulk_publish_report_cards_task

        task = bulk_publish_report_cards_task.delay(class_id, term_id, request.tenant.schema_name)
        return JsonResponse({'task_id': task.id}, status=202)

    return JsonResponse(workflow.bulk_publish(class_id, term_id))


@login_required
@require_GET
@api_view
def download_pdf(request, pk):
    card = services.get_report_card(pk, user=request.user)
    pdf = generate_pdf(card.pk)

    response = HttpResponse(pdf, content_type='application/pdf')
    response['Content-Disposition'] = f'attachment; filename="{card.report_number}.pdf"'
    return response


@teacher_or_admin_required
@require_GET
@api_view
def download_broadsheet(request):
    class_id = request.GET.get('class_id')
    term_id = request.GET.get('term_id')
    if not class_id or not term_id:
        raise BadRequest('class_id and term_id are required')

    workbook = export_class_broadsheet(class_id, term_id)

    response = HttpResponse(workbook, content_type=WORKBOOK_CONTENT_TYPE)
    response['Content-Disposition'] = f'attachment; filename="broadsheet_{class_id}_{term_id}.xlsx"'
    return response
