"""
.. py:module:: search
   :synopsis: Full-text search requests with facets, groups, and bookmarks.

.. moduleauthor:: Florian Leitner <florian.leitner@gmail.com>
.. License: GNU Affero GPL v3 (http://www.gnu.org/licenses/agpl.html)

A :class:`.SearchRequestBuilder` collects the options of a search index
query; :meth:`.SearchRequestBuilder.build` validates them together with the
query text and returns a :class:`.SearchRequest`::

    result = db.search('views101/animals').limit(10).includeDocs() \\
               .counts(['class', 'diet']) \\
               .querySearchResult('l*')

    for name, buckets in result.counts.items():
        print(name, dict(buckets))

Paging through results works by passing a result's bookmark to a new
request for the same query::

    more = db.search('views101/animals').limit(10) \\
             .bookmark(result.bookmark).querySearchResult('l*')

The query text (``q``) is always the last query parameter.
"""
from collections import OrderedDict
import logging

from libcouch import decoder, query
from libcouch.query import BOOL, INT, JSON, JSON_EACH, TEXT
from libcouch.query import ConstructionError, RawJson
from libcouch.decoder import Group, SearchRow
from libcouch.request import Execute, Request
from libcouch.serializer import DecodingError

__all__ = ['SearchRequestBuilder', 'SearchRequest', 'SearchResult', 'SearchRow',
           'Group']

SEARCH_OPTIONS = {
    'bookmark': TEXT,
    'counts': JSON,
    'drilldown': JSON_EACH,
    'group_field': TEXT,
    'group_limit': INT,
    'group_sort': JSON,
    'highlight_fields': JSON,
    'include_docs': BOOL,
    'include_fields': JSON,
    'limit': INT,
    'ranges': JSON,
    'sort': JSON,
    'stale': TEXT,
}
"""
The query options of search indexes and their encoding kinds.
"""

FIELD_LISTS = ('counts', 'include_fields', 'highlight_fields')

STALE_VALUES = frozenset(('ok',))


def CheckFieldList(name:str, fields:object):
    if not isinstance(fields, (list, tuple)) or not fields or \
       not all(isinstance(f, str) and f for f in fields):
        raise ConstructionError(
            '{} must be a non-empty list of field names'.format(name)
        )


def SortSpec(spec:object) -> object:
    """
    Promote the JSON text of a sort list (e.g., ``'["diet<string>"]'``) to
    :class:`.query.RawJson`; any other *spec* is returned unchanged.
    """
    if isinstance(spec, str) and not isinstance(spec, RawJson) and \
       spec.lstrip().startswith('['):
        return RawJson(spec)

    return spec


def CheckSort(name:str, spec:object):
    """
    Ensure a sort *spec* is a field-sort string, a list of them, or raw JSON
    text of either.
    """
    if isinstance(spec, RawJson):
        spec = spec.decode()
    elif isinstance(spec, str) and spec.lstrip().startswith('['):
        raise ConstructionError(
            '{} list given as a plain string; use RawJson'.format(name)
        )

    if isinstance(spec, str):
        spec = [spec]

    if not isinstance(spec, list) or not spec or \
       not all(isinstance(s, str) and s for s in spec):
        raise ConstructionError('invalid {} specification'.format(name))


def CheckRanges(ranges:object):
    """
    Ensure *ranges* maps dimensions to bucket labels and range expressions.
    """
    if isinstance(ranges, RawJson):
        ranges = ranges.decode()

    if not isinstance(ranges, dict) or not ranges:
        raise ConstructionError('ranges must be a non-empty JSON object')

    for dimension, buckets in ranges.items():
        if not isinstance(buckets, dict) or not buckets or \
           not all(isinstance(r, str) for r in buckets.values()):
            raise ConstructionError(
                'ranges of "{}" must map labels to range expressions'.format(
                    dimension
                )
            )


def CheckDrillDown(pairs:tuple):
    for pair in pairs:
        if len(pair) != 2 or not all(isinstance(i, str) for i in pair):
            raise ConstructionError(
                'drilldown {!r} is not a (field, value) pair'.format(pair)
            )


class SearchRequestBuilder:
    """
    A fluent builder for the query options of a search index.

    Each setter stores one value per option and returns the builder; setting
    an option again overwrites the previous value. The exception is
    :meth:`.drillDown`, which adds another field/value pair each time.
    """

    L = logging.getLogger("SearchRequestBuilder")

    def __init__(self, resource, path:[str], doc_type:object=dict):
        """
        :param resource: The :class:`.network.Resource` of the database.
        :param path: The path segments of the index, relative to the
                     database.
        :param doc_type: The default type of included documents (or a decode
                         function).
        """
        self.resource = resource
        self.path = tuple(path)
        self.doc_type = doc_type
        self._options = {}

    def __repr__(self) -> str:
        return '<{} {} {!r}>'.format(type(self).__name__, '/'.join(self.path),
                                     self._options)

    def option(self, name:str, value:object) -> 'SearchRequestBuilder':
        """
        Set the option with the wire *name* to *value*; unsupported options
        are rejected by :meth:`.build`.
        """
        self._options[name] = value
        return self

    def bookmark(self, bookmark:str) -> 'SearchRequestBuilder':
        """
        Continue after the results of an earlier request, identified by its
        (opaque) bookmark.
        """
        return self.option('bookmark', bookmark)

    def counts(self, fields:[str]) -> 'SearchRequestBuilder':
        """
        Request facet counts for the given *fields*.
        """
        return self.option('counts', list(fields))

    def drillDown(self, field:str, value:str) -> 'SearchRequestBuilder':
        """
        Restrict the results to documents with the facet *value* in the
        *field*; may be called several times.
        """
        pairs = self._options.setdefault('drilldown', [])
        pairs.append([field, value])
        return self

    def groupField(self, field:str, number:bool=False) \
            -> 'SearchRequestBuilder':
        """
        Group the results by a *field* of type string or *number*.
        """
        suffix = '<number>' if number else '<string>'
        return self.option('group_field', field + suffix)

    def groupLimit(self, limit:int) -> 'SearchRequestBuilder':
        return self.option('group_limit', limit)

    def groupSort(self, spec:object) -> 'SearchRequestBuilder':
        """
        Sort the groups; see :meth:`.sort` for the *spec* format.
        """
        return self.option('group_sort', SortSpec(spec))

    def highlightFields(self, fields:[str]) -> 'SearchRequestBuilder':
        return self.option('highlight_fields', list(fields))

    def includeDocs(self, flag:bool=True) -> 'SearchRequestBuilder':
        return self.option('include_docs', flag)

    def includeFields(self, fields:[str]) -> 'SearchRequestBuilder':
        return self.option('include_fields', list(fields))

    def limit(self, limit:int) -> 'SearchRequestBuilder':
        return self.option('limit', limit)

    def ranges(self, ranges:object) -> 'SearchRequestBuilder':
        """
        Request range facet counts.

        :param ranges: A dictionary of dimensions mapping bucket labels to
                       range expressions (e.g., ``"[0 TO 1.0]"``), or the
                       same as a JSON text.
        """
        if isinstance(ranges, str) and not isinstance(ranges, RawJson):
            ranges = RawJson(ranges)

        return self.option('ranges', ranges)

    def sort(self, spec:object) -> 'SearchRequestBuilder':
        """
        Sort the results.

        :param spec: A field-sort string (e.g., ``"-diet<string>"``), a list
                     of them, or a :class:`.query.RawJson` text of either.
                     Plain strings holding a JSON list are sent as
                     JSON text.
        """
        return self.option('sort', SortSpec(spec))

    def stale(self, stale:str='ok') -> 'SearchRequestBuilder':
        return self.option('stale', stale)

    def build(self, q:str, doc_type:object=None) -> 'SearchRequest':
        """
        Validate the options and return an immutable :class:`.SearchRequest`
        for the query text *q*.

        :param q: The (Lucene) query text.
        :param doc_type: The type of included documents, if different from
                         the builder's.
        :raise ConstructionError: If the query text is empty, an option is
                                  unknown or of the wrong type, or the
                                  options are contradictory.
        """
        if not isinstance(q, str) or not q:
            raise ConstructionError('the query text must be a non-empty str')

        doc_type = self.doc_type if doc_type is None else doc_type

        if not callable(doc_type):
            raise ConstructionError('document type {!r} is not callable'.format(
                doc_type
            ))

        options = query.Freeze(self._options, SEARCH_OPTIONS)
        grouped = 'group_field' in options

        if grouped and 'bookmark' in options:
            raise ConstructionError('bookmarks do not apply to grouped results')

        for name in ('group_sort', 'group_limit'):
            if name in options and not grouped:
                raise ConstructionError('{} requires group_field'.format(name))

        for name in FIELD_LISTS:
            if name in options:
                CheckFieldList(name, options[name])

        for name in ('sort', 'group_sort'):
            if name in options:
                CheckSort(name, options[name])

        for name in ('limit', 'group_limit'):
            if options.get(name, 1) < 1:
                raise ConstructionError('{} must be positive'.format(name))

        if 'ranges' in options:
            CheckRanges(options['ranges'])

        if 'drilldown' in options:
            CheckDrillDown(options['drilldown'])

        if 'stale' in options and options['stale'] not in STALE_VALUES:
            raise ConstructionError('stale must be "ok"')

        options = options.replace(query.Param('q', TEXT, q))
        request = Request('GET', self.path, options)
        self.L.debug("built %s", request.query_string)
        return SearchRequest(self.resource, request, doc_type, grouped)

    def querySearchResult(self, q:str, doc_type:object=None) \
            -> 'SearchResult':
        """
        Build and execute a request for the query text *q*.
        """
        return self.build(q, doc_type).getResponse()

    def query(self, q:str, doc_type:object=None) -> [object]:
        """
        Build and execute a request for the query text *q*, returning the
        matching documents only (this sets ``include_docs``).
        """
        self.includeDocs(True)
        return self.querySearchResult(q, doc_type).docs()

    def queryGroups(self, q:str, doc_type:object=None) -> OrderedDict:
        """
        Build and execute a grouped request for the query text *q*,
        returning an ordered dictionary of group keys mapped to the list of
        documents in each group (this sets ``include_docs``).

        :raise ConstructionError: If no group field was set.
        """
        if self._options.get('group_field') is None:
            raise ConstructionError('queryGroups requires a group field')

        self.includeDocs(True)
        result = self.querySearchResult(q, doc_type)
        return OrderedDict((by, [row.doc for row in group.rows])
                           for by, group in result.groups.items())


class SearchRequest:
    """
    An immutable, executable search request; it is executed exactly once.
    """

    def __init__(self, resource, request:Request, doc_type:object=dict,
                 grouped:bool=False):
        self.resource = resource
        self.request = request
        self.doc_type = doc_type
        self.grouped = grouped
        self.__executed = False

    def __repr__(self) -> str:
        return '<{} {}?{}>'.format(type(self).__name__,
                                   '/'.join(self.request.path),
                                   self.request.query_string)

    def getResponse(self) -> 'SearchResult':
        """
        Perform the request and return the result.

        :raise CommunicationError: If there is an error communicating with
                                   the server.
        :raise DecodingError: If the response does not have the expected
                              shape.
        :raise RuntimeError: If the request was executed before.
        """
        if self.__executed:
            raise RuntimeError("request already executed")

        self.__executed = True
        return SearchResult(Execute(self.request, self.resource),
                            self.grouped, self.doc_type)


class SearchResult:
    """
    The typed, read-only content of a search response.

    Either :attr:`.rows` (ungrouped) or :attr:`.groups` (grouped) is set,
    never both. Structures the service did not return are ``None``.
    """

    def __init__(self, data:dict, grouped:bool=False, doc_type:object=dict):
        """
        :param data: The decoded JSON response object.
        :param grouped: ``True`` if the request set a group field.
        :param doc_type: The type of included documents.
        :raise DecodingError: If the response shape does not match.
        """
        self._grouped = grouped

        if grouped:
            if 'rows' in data:
                raise DecodingError('grouped response with top-level rows')

            self._rows = None
            self._groups = decoder.DecodeGroups(data, doc_type)
        else:
            if 'groups' in data:
                raise DecodingError('ungrouped response with groups')

            self._rows = decoder.DecodeSearchRows(decoder.Rows(data),
                                                  doc_type)
            self._groups = None

        self._total_rows = decoder.Field(data, 'total_rows', (int,))
        self._bookmark = decoder.Field(data, 'bookmark', (str,))
        self._counts = decoder.DecodeFacets(data.get('counts'), 'counts')
        self._ranges = decoder.DecodeFacets(data.get('ranges'), 'ranges')

    def __repr__(self) -> str:
        size = len(self._groups if self._grouped else self._rows)
        return '<{} {}={} total_rows={}>'.format(
            type(self).__name__, 'groups' if self._grouped else 'rows', size,
            self._total_rows
        )

    @property
    def grouped(self) -> bool:
        return self._grouped

    @property
    def rows(self) -> (decoder.SearchRow,):
        """
        The :class:`.decoder.SearchRow` tuples, or ``None`` if grouped.
        """
        return self._rows

    @property
    def groups(self) -> decoder.Groups:
        """
        The :class:`.decoder.Groups`, or ``None`` if ungrouped.
        """
        return self._groups

    @property
    def total_rows(self) -> int:
        """
        The total number of matches (if returned).
        """
        return self._total_rows

    @property
    def bookmark(self) -> str:
        """
        The opaque token to continue after these results, or ``None``.
        """
        return self._bookmark

    @property
    def counts(self) -> decoder.Facets:
        """
        The facet counts per field, or ``None`` if not requested.
        """
        return self._counts

    @property
    def ranges(self) -> decoder.Facets:
        """
        The range facet counts per dimension, or ``None`` if not requested.
        """
        return self._ranges

    def docs(self) -> [object]:
        """
        The documents of all rows (of all groups, in order); requires
        ``include_docs``.
        """
        if self._grouped:
            return [row.doc for group in self._groups.values()
                    for row in group.rows]

        return [row.doc for row in self._rows]
