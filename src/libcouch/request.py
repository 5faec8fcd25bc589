"""
.. py:module:: request
   :synopsis: Immutable request descriptors and their execution.

.. moduleauthor:: Florian Leitner <florian.leitner@gmail.com>
.. License: GNU Affero GPL v3 (http://www.gnu.org/licenses/agpl.html)

A :class:`.Request` is what a builder's ``build()`` produces: the target path
segments, the HTTP method, a frozen :class:`.query.QueryOptions` snapshot,
and an optional JSON body. :func:`.Execute` sends it exactly once through a
:class:`.network.Resource` and returns the decoded JSON object. Nothing is
retried here; retrying failed socket operations is up to the session.
"""
from collections import namedtuple
from http import client
import logging

from libcouch import network, query, serializer

__all__ = ['Request', 'Execute']

L = logging.getLogger("Execute")


class Request(namedtuple("Request", "method path options body")):
    """
    An immutable request descriptor.

    .. attribute:: method

        The HTTP method, ``'GET'`` or ``'POST'``.

    .. attribute:: path

        A tuple of path segments, relative to the database resource.

    .. attribute:: options

        The :class:`.query.QueryOptions` to send in the query string.

    .. attribute:: body

        A JSON-serializable body (e.g., ``{"keys": [...]}``) or ``None``.
    """

    __slots__ = ()

    def __new__(cls, method:str, path:[str], options:query.QueryOptions=None,
                body:object=None):
        if options is None:
            options = query.QueryOptions()

        return super(Request, cls).__new__(cls, method.upper(), tuple(path),
                                           options, body)

    @property
    def query_string(self) -> str:
        """
        The encoded query string (without ``?``) of this request.
        """
        return self.options.encode()

    def url(self, resource:network.Resource) -> str:
        """
        The full URL of this request against the given *resource*.
        """
        return network.UrlJoin(resource.url, list(self.path),
                               self.query_string)


def Execute(request:Request, resource:network.Resource) -> dict:
    """
    Issue the *request* against the *resource* and return the decoded JSON
    object of the response.

    :raise CommunicationError: If the server could not be reached or did not
                               respond with a 2xx status; the error carries
                               the status and error body (if any).
    :raise DecodingError: If the response is not a JSON object.
    """
    L.debug("%s %s?%s", request.method, '/'.join(request.path),
            request.query_string)

    try:
        response = resource.callJson(request.method, request.path,
                                     request.body,
                                     query_string=request.query_string)
    except network.CommunicationError:
        raise
    except (OSError, client.HTTPException) as e:
        raise network.TransportError('{} failed: {}'.format(
            request.method, e
        )) from e

    if not 200 <= response.status < 300:
        raise network.HTTPError('unexpected status {}'.format(
            response.status
        ), status=response.status)

    if not isinstance(response.data, dict):
        raise serializer.DecodingError(
            'expected a JSON object, got {}'.format(
                type(response.data).__name__
            )
        )

    return response.data
