"""
Gradebook views package.

- base: access decorators and JSON helpers
- report_cards: report card generation, workflow, comments and downloads
"""

from .base import (
    is_school_admin,
    admin_required,
    is_teacher_or_admin,
    teacher_or_admin_required,
)

from .report_cards import (
    curricula,
    generate,
    bulk_generate,
    report_card_list,
    report_card_detail,
    update_comments,
    update_subject_comment,
    submit_for_review,
    approve,
    publish,
    archive,
    bulk_publish,
    download_pdf,
    download_broadsheet,
)
