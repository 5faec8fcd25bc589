"""
.. py:module:: views
   :synopsis: View requests and their typed responses.

.. moduleauthor:: Florian Leitner <florian.leitner@gmail.com>
.. License: GNU Affero GPL v3 (http://www.gnu.org/licenses/agpl.html)

A :class:`.ViewRequestBuilder` collects the options of a view query and
builds an immutable :class:`.ViewRequest`, which is executed once to obtain
a :class:`.ViewResponse`::

    count = db.view('animals/by_class', str, int).reduce(True) \\
              .build().getSingleValue()

    request = db.view('animals/by_class', str, object).includeDocs() \\
                .rowsPerPage(10).build()
    page = request.getResponse()

    while page is not None:
        for row in page:
            print(row.id, row.key)
        page = page.nextPage()

The key type declared for a view is one of :data:`.decoder.KEY_TYPES`; the
value type may be any type or a decode function applied to each row value.
"""
import logging

from libcouch import decoder, query
from libcouch.query import BOOL, INT, JSON, TEXT, ConstructionError
from libcouch.decoder import ViewRow
from libcouch.request import Execute, Request
from libcouch.serializer import DecodingError

__all__ = ['ViewRequestBuilder', 'ViewRequest', 'ViewResponse', 'ViewRow']

VIEW_OPTIONS = {
    'descending': BOOL,
    'endkey': JSON,
    'endkey_docid': TEXT,
    'group': BOOL,
    'group_level': INT,
    'include_docs': BOOL,
    'inclusive_end': BOOL,
    'key': JSON,
    'keys': JSON,
    'limit': INT,
    'reduce': BOOL,
    'skip': INT,
    'stale': TEXT,
    'startkey': JSON,
    'startkey_docid': TEXT,
    'update_seq': BOOL,
}
"""
The query options of views and their encoding kinds.
"""

KEY_OPTIONS = ('key', 'startkey', 'endkey')

STALE_VALUES = frozenset(('ok', 'update_after'))


def CheckKey(name:str, key:object, key_type:type) -> object:
    """
    Ensure the *key* given as option *name* matches the view's *key_type*.

    :raise ConstructionError: If it does not.
    """
    try:
        return decoder.Coerce(key, key_type, name)
    except DecodingError as e:
        raise ConstructionError(str(e)) from e


def CheckTypes(key_type:type, value_type:object, doc_type:object):
    """
    Validate the declared key, value, and document types of a view request.

    :raise ConstructionError: If any of them is not supported.
    """
    if key_type not in decoder.KEY_TYPES:
        raise ConstructionError('unsupported key type {!r}'.format(key_type))

    if not callable(value_type):
        raise ConstructionError('value type {!r} is not callable'.format(
            value_type
        ))

    if not callable(doc_type):
        raise ConstructionError('document type {!r} is not callable'.format(
            doc_type
        ))


class ViewRequestBuilder:
    """
    A fluent builder for the query options of a view.

    Each setter stores one value per option and returns the builder; setting
    an option again overwrites the previous value. :meth:`.build` validates
    all options at once.
    """

    L = logging.getLogger("ViewRequestBuilder")

    def __init__(self, resource, path:[str], key_type:type=object,
                 value_type:object=object, doc_type:object=dict):
        """
        :param resource: The :class:`.network.Resource` of the database.
        :param path: The path segments of the view, relative to the database.
        :param key_type: The type of the keys emitted by the view.
        :param value_type: The type of the values emitted by the view (or a
                           decode function).
        :param doc_type: The type of included documents (or a decode
                         function).
        """
        self.resource = resource
        self.path = tuple(path)
        self.key_type = key_type
        self.value_type = value_type
        self.doc_type = doc_type
        self._options = {}
        self._page_size = None

    def __repr__(self) -> str:
        return '<{} {} {!r}>'.format(type(self).__name__, '/'.join(self.path),
                                     self._options)

    def option(self, name:str, value:object) -> 'ViewRequestBuilder':
        """
        Set the option with the wire *name* to *value*; unsupported options
        are rejected by :meth:`.build`.
        """
        self._options[name] = value
        return self

    def descending(self, flag:bool=True) -> 'ViewRequestBuilder':
        return self.option('descending', flag)

    def endKey(self, key:object) -> 'ViewRequestBuilder':
        return self.option('endkey', key)

    def endKeyDocId(self, doc_id:str) -> 'ViewRequestBuilder':
        return self.option('endkey_docid', doc_id)

    def group(self, flag:bool=True) -> 'ViewRequestBuilder':
        return self.option('group', flag)

    def groupLevel(self, level:int) -> 'ViewRequestBuilder':
        return self.option('group_level', level)

    def includeDocs(self, flag:bool=True) -> 'ViewRequestBuilder':
        """
        Embed the full document in each row.
        """
        return self.option('include_docs', flag)

    def inclusiveEnd(self, flag:bool=True) -> 'ViewRequestBuilder':
        return self.option('inclusive_end', flag)

    def key(self, key:object) -> 'ViewRequestBuilder':
        return self.option('key', key)

    def keys(self, *keys:[object]) -> 'ViewRequestBuilder':
        """
        Only return rows for the given *keys*; sent as a POST body.
        """
        return self.option('keys', list(keys))

    def limit(self, limit:int) -> 'ViewRequestBuilder':
        return self.option('limit', limit)

    def reduce(self, flag:bool=True) -> 'ViewRequestBuilder':
        """
        Toggle the view's reduce function (on by default, if it has one).
        """
        return self.option('reduce', flag)

    def skip(self, skip:int) -> 'ViewRequestBuilder':
        return self.option('skip', skip)

    def stale(self, stale:str) -> 'ViewRequestBuilder':
        """
        Use a stale index: either ``'ok'`` or ``'update_after'``.
        """
        return self.option('stale', stale)

    def startKey(self, key:object) -> 'ViewRequestBuilder':
        return self.option('startkey', key)

    def startKeyDocId(self, doc_id:str) -> 'ViewRequestBuilder':
        return self.option('startkey_docid', doc_id)

    def updateSeq(self, flag:bool=True) -> 'ViewRequestBuilder':
        return self.option('update_seq', flag)

    def rowsPerPage(self, rows:int) -> 'ViewRequestBuilder':
        """
        Paginate the view with the given number of *rows* per page; see
        :meth:`.ViewResponse.nextPage`.
        """
        if isinstance(rows, bool) or not isinstance(rows, int) or rows < 1:
            raise ConstructionError('rows per page must be a positive int')

        self._page_size = rows
        return self

    def build(self) -> 'ViewRequest':
        """
        Validate the options and return an immutable :class:`.ViewRequest`.

        :raise ConstructionError: If the declared types are unsupported, an
                                  option is unknown or of the wrong type, a
                                  key does not match the key type, or the
                                  options are contradictory.
        """
        CheckTypes(self.key_type, self.value_type, self.doc_type)
        options = query.Freeze(self._options, VIEW_OPTIONS)

        for name in KEY_OPTIONS:
            if name in options:
                CheckKey(name, options[name], self.key_type)

        body = None

        if 'keys' in options:
            keys = options['keys']

            if not isinstance(keys, (list, tuple)):
                raise ConstructionError('keys must be a list')

            for key in keys:
                CheckKey('keys', key, self.key_type)

            if any(name in options for name in KEY_OPTIONS):
                raise ConstructionError(
                    'keys cannot be combined with key, startkey, or endkey'
                )

            body = {'keys': list(keys)}
            options = options.without('keys')

        reduce = options.get('reduce')

        if reduce is False and \
           (options.get('group') or 'group_level' in options):
            raise ConstructionError('grouping requires reduce')

        if reduce is True and options.get('include_docs'):
            raise ConstructionError('include_docs is invalid for reduce')

        for name in ('limit', 'skip', 'group_level'):
            if options.get(name, 0) < 0:
                raise ConstructionError('{} cannot be negative'.format(name))

        if 'stale' in options and options['stale'] not in STALE_VALUES:
            raise ConstructionError('stale must be one of {}'.format(
                sorted(STALE_VALUES)
            ))

        if self._page_size is not None:
            if body is not None or 'limit' in options or 'skip' in options:
                raise ConstructionError(
                    'pagination cannot be combined with keys, limit, or skip'
                )

            # one extra row marks the start of the next page
            options = options.replace(
                query.Param('limit', INT, self._page_size + 1)
            )

        request = Request('POST' if body else 'GET', self.path, options, body)
        self.L.debug("built %s %s", request.method, request.query_string)
        return ViewRequest(self.resource, request, self.key_type,
                           self.value_type, self.doc_type, self._page_size)


class ViewRequest:
    """
    An immutable, executable view request.

    A request is executed exactly once, by either :meth:`.getResponse` or
    :meth:`.getSingleValue`; build a new request to query again.
    """

    def __init__(self, resource, request:Request, key_type:type=object,
                 value_type:object=object, doc_type:object=dict,
                 page_size:int=None, page:int=1):
        self.resource = resource
        self.request = request
        self.key_type = key_type
        self.value_type = value_type
        self.doc_type = doc_type
        self.page_size = page_size
        self.page = page
        self.__executed = False

    def __repr__(self) -> str:
        return '<{} {} {}?{}>'.format(type(self).__name__, self.request.method,
                                      '/'.join(self.request.path),
                                      self.request.query_string)

    def getResponse(self) -> 'ViewResponse':
        """
        Perform the request and return the response.

        :raise CommunicationError: If there is an error communicating with
                                   the server.
        :raise DecodingError: If the response does not match the declared
                              key or value types.
        :raise RuntimeError: If the request was executed before.
        """
        if self.__executed:
            raise RuntimeError("request already executed")

        self.__executed = True
        return ViewResponse(self, Execute(self.request, self.resource))

    def getSingleValue(self) -> object:
        """
        Perform the request and return the value of the first row, or
        ``None`` if there are no rows.

        This is primarily intended for retrieving a single result (e.g., a
        count) from a reduced view.
        """
        rows = self.getResponse().rows
        return rows[0].value if rows else None

    def following(self, row:ViewRow) -> 'ViewRequest':
        """
        Return a new request for the page starting at *row*.
        """
        params = [query.Param('startkey', JSON, row.key)]
        options = self.request.options

        if row.id is None:
            options = options.without('startkey_docid')
        else:
            params.append(query.Param('startkey_docid', TEXT, row.id))

        request = self.request._replace(options=options.replace(*params))
        return ViewRequest(self.resource, request, self.key_type,
                           self.value_type, self.doc_type, self.page_size,
                           self.page + 1)


class ViewResponse:
    """
    The typed, read-only rows and metadata of a view response.
    """

    L = logging.getLogger("ViewResponse")

    def __init__(self, request:ViewRequest, data:dict):
        """
        :param request: The executed :class:`.ViewRequest`.
        :param data: The decoded JSON response object.
        :raise DecodingError: If the response does not match the request.
        """
        rows = decoder.DecodeViewRows(data, request.key_type,
                                      request.value_type, request.doc_type)
        self._request = request
        self._next = None

        if request.page_size is not None and len(rows) > request.page_size:
            self._next = rows[request.page_size]
            rows = rows[:request.page_size]

        self._rows = rows
        self._total_rows = decoder.Field(data, 'total_rows', (int,))
        self._offset = decoder.Field(data, 'offset', (int,))
        self._update_seq = data.get('update_seq')

    def __iter__(self) -> iter([decoder.ViewRow]):
        return iter(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def __repr__(self) -> str:
        return '<{} rows={} total_rows={}>'.format(
            type(self).__name__, len(self._rows), self._total_rows
        )

    @property
    def rows(self) -> (decoder.ViewRow,):
        """
        The :class:`.decoder.ViewRow` tuples of this response (page).
        """
        return self._rows

    @property
    def total_rows(self) -> int:
        """
        The total number of rows in the view, or ``None`` for reduced views.
        """
        return self._total_rows

    @property
    def offset(self) -> int:
        """
        The offset of the first row in the view, or ``None`` for reduced
        views.
        """
        return self._offset

    @property
    def update_seq(self) -> object:
        """
        The update sequence of the view index (if ``update_seq`` was set).
        """
        return self._update_seq

    @property
    def page(self) -> int:
        """
        The (1-based) number of this page.
        """
        return self._request.page

    def keys(self) -> [object]:
        return [row.key for row in self._rows]

    def values(self) -> [object]:
        return [row.value for row in self._rows]

    def docs(self) -> [object]:
        """
        The documents of the rows; requires ``include_docs``.
        """
        return [row.doc for row in self._rows]

    def hasNextPage(self) -> bool:
        """
        ``True`` if this is a paginated response and more rows follow.
        """
        return self._next is not None

    def nextPage(self) -> 'ViewResponse':
        """
        Fetch the next page of a paginated view, or return ``None`` if this
        is the last (or only) page.
        """
        if self._next is None:
            return None

        request = self._request.following(self._next)
        self.L.debug("fetching page %s", request.page)
        return request.getResponse()
