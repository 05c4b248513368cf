"""
Configuration settings for the gradebook app.

These values can be overridden in Django settings by prefixing with GRADEBOOK_.
For example, to change the curriculum used when a request does not name one:
    GRADEBOOK_DEFAULT_CURRICULUM = 'CBC'

All configuration values are lazily loaded to avoid Django setup issues.
"""


def _get_setting(name, default):
    """Get a gradebook setting from Django settings or use default."""
    from django.conf import settings
    return getattr(settings, f'GRADEBOOK_{name}', default)


# Define defaults as constants for direct use when Django settings are not needed
_DEFAULTS = {
    # Curriculum applied when none is supplied
    'DEFAULT_CURRICULUM': '8-4-4',

    # Additional curricula, {id: {'label', 'scale', 'mean_grade_rule'}}
    'EXTRA_CURRICULA': {},

    # Report numbering
    'REPORT_NUMBER_PREFIX': 'RC',

    # Rendered documents
    'PDF_TEMPLATE': 'gradebook/report_card_pdf.html',
    'PDF_UPLOAD_DIR': 'report_cards',

    # Export settings
    'EXCEL_HEADER_COLOR': '4F46E5',

    # Celery task settings
    'TASK_MAX_RETRIES': 3,
    'TASK_RETRY_DELAY': 60,  # seconds
    'BULK_TASK_SOFT_TIME_LIMIT': 15 * 60,
    'BULK_TASK_TIME_LIMIT': 20 * 60,
}


class _ConfigProxy:
    """
    Lazy configuration proxy that loads settings only when accessed.
    This avoids Django setup issues during module import.
    """

    def __getattr__(self, name):
        if name in _DEFAULTS:
            return _get_setting(name, _DEFAULTS[name])
        raise AttributeError(f"Unknown config setting: {name}")


# Module-level proxy object for attribute access
_config = _ConfigProxy()


def __getattr__(name):
    """Enable module-level attribute access via the config proxy."""
    return getattr(_config, name)
