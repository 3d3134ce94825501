class InputError(ValueError):
    """Malformed analytics request, rejected before any data is read."""


class DataUnavailable(RuntimeError):
    """The transaction store or the external source could not be reached."""


class SourceUnavailable(DataUnavailable):
    """The external source of record failed or returned an unusable response."""
