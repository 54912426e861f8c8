from typing import List, Any, Optional


class ResponseState:
    """ Encapsulates the outcome of the last request sent for an object.

        Every `xrestsync.remote.api_object.APIObject` has one at
        `xrestsync.remote.api_object.APIObject.response_state`;
        `xrestsync.remote.client.APIClient.send` fills it in when one is passed to it.

        Also useful:

        - `ResponseState.had_error`
        - `ResponseState.response_code`

        `ResponseState.try_count` is incremented each time an attempt is made to send the
        request (so with retries enabled it can be more than `1`).
    """

    had_error: Optional[bool] = None
    """ Is `None` if no request involving this object has been completed yet. `True` if last http
        request with this object had an error, otherwise `False`.
    """

    errors: Optional[List[Any]] = None
    """ List of human readable error strings related to the last request involving this object.

        An error that was recovered from (ie: a `404` when reading, which just means the object
        is gone) is still recorded here, even though the operation itself succeeded.
    """

    response_code: Optional[int] = None
    """ HTTP response code for the last request involving this object; `None` if no response
        was received (ie: connection error).
    """

    try_count: int = 0
    """ Right after an attempt is made to send the request, this is incremented by 1.
        This is how many attempts have been made for the last request.
    """

    method: Optional[str] = None
    """ HTTP method of the last request. """

    path: Optional[str] = None
    """ Path (with query string, after `{id}` substitution) of the last request. """

    def mark_for_no_errors(self):
        """
        This can be called to reliably mark that no errors happened.
        Resets all related error fields and set had_error = False.

        Won't change `ResponseState.response_code` and other non-error related information.

        Resets:

        - `ResponseState.had_error`
        - `ResponseState.errors`
        """
        # _self Helps PyCharm go to the class-level attribute when jumping to it's declaration.
        # Otherwise it will come here instead of where the attributes doc-comment is.
        _self = self
        _self.had_error = False
        _self.errors = None

    def add_error(self, error: Any, response_code: int = None):
        """ Appends `error` (as a `str`) to `ResponseState.errors` and sets `had_error`. """
        _self = self
        if _self.errors is None:
            _self.errors = []
        _self.errors.append(str(error))
        _self.had_error = True
        if response_code is not None:
            _self.response_code = response_code

    def reset(self, *, method: str = None, path: str = None, for_retry: bool = False):
        """
        `xrestsync.remote.client.APIClient.send` calls this before each attempt.
        Everything in object will be reset to None or Zero.

        Args:
            method: Method of the request that is about to be sent.
            path: Path of the request that is about to be sent.
            for_retry (bool): If provided value is:

            - `False` (default): Nothing more happens.
            - `True`: We will NOT reset the self.try_count, it will be left as-is.
        """
        _self = self
        _self.had_error = None
        _self.errors = None
        _self.response_code = None

        if method is not None:
            _self.method = method
        if path is not None:
            _self.path = path

        if not for_retry:
            _self.try_count = 0

    def __repr__(self):
        return (
            f"ResponseState(method={self.method!r}, path={self.path!r}, "
            f"response_code={self.response_code!r}, had_error={self.had_error!r}, "
            f"try_count={self.try_count!r})"
        )
