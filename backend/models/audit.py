AUDIT_SOURCES = ('manual', 'device', 'api')


def resolve_audit_source(value, fallback: str = 'manual') -> str:
    """Blank resolves to ``fallback``; an unknown source resolves to ''."""
    if value is None or str(value).strip() == '':
        return fallback
    normalized = str(value).strip().lower()
    return normalized if normalized in AUDIT_SOURCES else ''
