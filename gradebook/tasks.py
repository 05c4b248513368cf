"""
Celery tasks for gradebook app.
Runs class-wide report card passes and PDF rendering in the background.

Every task takes the tenant's schema name and runs inside schema_context so
it reads and writes the right school's data.
"""
import logging

from celery import shared_task
from django.contrib.auth import get_user_model
from django.db import OperationalError
from django_tenants.utils import schema_context

from . import config


logger = logging.getLogger(__name__)


def _user(user_id):
    if user_id is None:
        return None
    return get_user_model().objects.filter(pk=user_id).first()


@shared_task(
    max_retries=0,
    soft_time_limit=config.BULK_TASK_SOFT_TIME_LIMIT,
    time_limit=config.BULK_TASK_TIME_LIMIT,
)
def bulk_generate_report_cards_task(class_id, term_id, tenant_schema, curriculum=None,
                                    include_fee_balance=False, regenerate=False, generated_by_id=None):
    """
    Generate report cards for a whole class.

    Returns the same {total, generated, skipped, errors} outcome as the
    synchronous call.
    """
    from .services import bulk_generate_report_cards

    with schema_context(tenant_schema):
        outcome = bulk_generate_report_cards(
            class_id,
            term_id,
            curriculum=curriculum,
            include_fee_balance=include_fee_balance,
            regenerate=regenerate,
            generated_by=_user(generated_by_id),
        )

    logger.info(
        f"[{tenant_schema}] Bulk report card generation finished: "
        f"{outcome['generated']}/{outcome['total']} generated"
    )
    return outcome


@shared_task(
    max_retries=0,
    soft_time_limit=config.BULK_TASK_SOFT_TIME_LIMIT,
    time_limit=config.BULK_TASK_TIME_LIMIT,
)
def bulk_publish_report_cards_task(class_id, term_id, tenant_schema):
    """Publish every approved report card of a class for a term."""
    from .workflow import bulk_publish

    with schema_context(tenant_schema):
        outcome = bulk_publish(class_id, term_id)

    logger.info(
        f"[{tenant_schema}] Bulk publish finished: {outcome['published']}/{outcome['total']} published"
    )
    return outcome


@shared_task(
    bind=True,
    max_retries=config.TASK_MAX_RETRIES,
    default_retry_delay=config.TASK_RETRY_DELAY,
)
def render_report_card_pdf_task(self, report_card_id, tenant_schema):
    """
    Render and store the PDF for one report card.

    Retries on database hiccups and storage errors; a missing card is not
    retried.
    """
    from .exceptions import NotFound
    from .rendering import generate_pdf

    with schema_context(tenant_schema):
        try:
            pdf = generate_pdf(report_card_id)
        except NotFound:
            logger.warning(f"[{tenant_schema}] Report card {report_card_id} not found, nothing to render")
            return {'success': False, 'error': 'Report card not found'}
        except (OperationalError, OSError) as e:
            logger.warning(
                f"[{tenant_schema}] Rendering report card {report_card_id} failed "
                f"(attempt {self.request.retries + 1}): {e}"
            )
            raise self.retry(exc=e)

    return {'success': True, 'report_card_id': str(report_card_id), 'size': len(pdf)}
