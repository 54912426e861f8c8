from typing import List, Sequence


class XRestSyncError(Exception):
    """ Base class of every error raised by `xrestsync`. """
    pass


class ConfigInvalidError(XRestSyncError):
    """
    Raised when a `xrestsync.remote.options.ClientOptions` or
    `xrestsync.remote.options.ObjectOptions` can't be used as configured.

    All problems found while validating are collected before raising, you can see each of them
    individually via `ConfigInvalidError.diagnostics`.
    """

    diagnostics: List[str]
    """ Human readable description of each configuration problem that was found. """

    def __init__(self, message: str = None, *, diagnostics: Sequence[str] = None):
        self.diagnostics = list(diagnostics or [])
        if message is None:
            message = "; ".join(self.diagnostics) or "invalid configuration"
        super().__init__(message)


class KeyPathError(XRestSyncError, LookupError):
    """
    Could not descend a `/`-delimited key path into a JSON document.

    See `xrestsync.common.json_path.get_object_at_key`.
    """

    path: str
    """ The full path that was asked for. """

    seen: str
    """ The part of the path that was found before the failure, ie: `/attrs/config`. """

    missing: str = None
    """ Segment that could not be found (or could not be descended into). """

    available: List[str]
    """ Keys that were available at the depth where the lookup failed. """

    def __init__(
            self,
            message: str,
            *,
            path: str,
            seen: str = "",
            missing: str = None,
            available: Sequence[str] = None
    ):
        super().__init__(message)
        self.path = path
        self.seen = seen
        self.missing = missing
        self.available = list(available or [])


class KeyPathTypeError(KeyPathError):
    """ Value was found at the key path, but it's not a JSON string, number or boolean. """


class DecodeError(XRestSyncError):
    """ A response body (or user supplied document) was not the JSON we expected. """


class IdentityMissingError(XRestSyncError):
    """
    The object has no id and there is no way to learn it, or an operation that needs the id
    was called before the id was known.
    """


class SearchNoMatchError(XRestSyncError):
    """ A collection search did not find any record with the searched for key/value. """


class SearchShapeError(XRestSyncError):
    """ Search results were not shaped as expected (not an array, elements not objects...). """


class InternalInvariantError(XRestSyncError):
    """
    Something that should never happen, happened. Normally this means server-side state is
    ambiguous (ie: an object *may* have been created, but we never learned its id).
    """
