from __future__ import annotations


class InvalidArgumentError(Exception):
    pass


class ForbiddenError(Exception):
    pass


class NotFoundError(Exception):
    pass


class UpstreamError(Exception):
    """Payment provider unreachable, timed out, or answered with a non-2xx status."""


class MalformedPayloadError(Exception):
    pass
