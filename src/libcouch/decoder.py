"""
.. py:module:: decoder
   :synopsis: Decoding of view and search response bodies into typed rows.

.. moduleauthor:: Florian Leitner <florian.leitner@gmail.com>
.. License: GNU Affero GPL v3 (http://www.gnu.org/licenses/agpl.html)

Row keys, values, and documents are coerced to the types the caller
declared; a mismatch is a :exc:`.serializer.DecodingError`, which is
distinct from the :exc:`.network.CommunicationError` raised when no
response could be obtained at all.

Facet counts and ranges decode to :class:`.Facets`, read-only mappings
of field names to :class:`.FacetBuckets`, which in turn map bucket labels to
counts. Both keep the order the service returned:

>>> facets = DecodeFacets({'diet': {'herbivore': 1, 'omnivore': 0}})
>>> list(facets['diet'].items())
[('herbivore', 1), ('omnivore', 0)]
"""
from collections import namedtuple
from collections.abc import Mapping

from libcouch.serializer import DecodingError

__all__ = ['Coerce', 'DecodeFacets', 'DecodeGroups', 'DecodeSearchRows',
           'DecodeViewRows', 'Facets', 'FacetBuckets', 'Group', 'Groups',
           'SearchRow', 'ViewRow', 'KEY_TYPES']

KEY_TYPES = (str, int, float, bool, list, dict, object)
"""
The types a view's keys can be declared as; `object` accepts any JSON key.
"""


ViewRow = namedtuple("ViewRow", "id key value doc error")
"""
A row of a view response.

.. attribute:: id

    The ID of the document that emitted the row, or ``None`` for reduced
    rows.

.. attribute:: key

    The emitted key, coerced to the declared key type.

.. attribute:: value

    The emitted (or reduced) value, coerced to the declared value type.

.. attribute:: doc

    The document, if ``include_docs`` was requested; otherwise ``None``.

.. attribute:: error

    An error string (e.g., ``"not_found"`` for missing ``keys``) or ``None``.
"""

SearchRow = namedtuple("SearchRow", "id fields order doc highlights")
"""
A row of a search result.

.. attribute:: id

    The ID of the matching document.

.. attribute:: fields

    A dictionary of the stored index fields of the row.

.. attribute:: order

    A tuple of the sort values of the row (the relevance score and
    document ID by default, or the values of the ``sort`` fields).

.. attribute:: doc

    The document, if ``include_docs`` was requested; otherwise ``None``.

.. attribute:: highlights

    A dictionary of highlighted field fragments or ``None``.
"""

Group = namedtuple("Group", "by total_rows rows")
"""
A group of a grouped search result: the group key (``by``), the total
number of matches in the group, and the group's :class:`.SearchRow` tuple.
"""


def Coerce(value:object, kind:object, what:str='value') -> object:
    """
    Coerce a decoded JSON *value* to the declared *kind*.

    JSON ``null`` (``None``) passes through any *kind*, as does any value
    if *kind* is `object` or ``None``. For the JSON types `str`, `bool`,
    `int`, `float`, `list`, and `dict`, the value must be an instance of that
    type; `bool` is not accepted as `int`, but `int` is converted to `float`.
    Any other callable *kind* is applied to the value.

    >>> Coerce(3, float)
    3.0
    >>> Coerce(True, int)
    Traceback (most recent call last):
        ...
    libcouch.serializer.DecodingError: value True is not of type int

    :param value: The value to coerce.
    :param kind: The type or a one-argument decode function.
    :param what: The name of the value in error messages.
    :raise DecodingError: If the value does not match the declared type.
    """
    if value is None or kind is None or kind is object:
        return value

    if kind is bool:
        valid = isinstance(value, bool)
    elif kind is int:
        valid = isinstance(value, int) and not isinstance(value, bool)
    elif kind is float:
        valid = isinstance(value, (int, float)) and \
                not isinstance(value, bool)
        if valid: value = float(value)
    elif kind in (str, list, dict):
        valid = isinstance(value, kind)
    elif isinstance(kind, type) and issubclass(kind, dict):
        if not isinstance(value, dict):
            raise DecodingError('{} {!r} is not a JSON object'.format(
                what, value
            ))

        return kind(value)
    elif callable(kind):
        try:
            return kind(value)
        except (TypeError, ValueError, KeyError) as e:
            raise DecodingError('cannot decode {} {!r}: {}'.format(
                what, value, e
            )) from e
    else:
        raise DecodingError('cannot decode {} as {!r}'.format(what, kind))

    if not valid:
        raise DecodingError('{} {!r} is not of type {}'.format(
            what, value, kind.__name__
        ))

    return value


def Field(data:dict, name:str, types:tuple, default:object=None) -> object:
    """
    Return the optional field *name* of a JSON object *data* (or the
    *default*), ensuring it is of one of the given *types*.

    :raise DecodingError: If the field has a different type.
    """
    value = data.get(name)

    if value is None:
        return default

    if not isinstance(value, types) or \
       (isinstance(value, bool) and bool not in types):
        raise DecodingError('"{}" has an unexpected type: {!r}'.format(
            name, value
        ))

    return value


def Rows(data:dict, name:str='rows') -> list:
    """
    Return the row array *name* of the JSON object *data*.

    :raise DecodingError: If it is missing or not an array of objects.
    """
    rows = data.get(name)

    if not isinstance(rows, list):
        raise DecodingError('response has no "{}" array'.format(name))

    for row in rows:
        if not isinstance(row, dict):
            raise DecodingError('row {!r} is not a JSON object'.format(row))

    return rows


def DecodeViewRows(data:dict, key_type:object=object,
                   value_type:object=object,
                   doc_type:object=dict) -> (ViewRow,):
    """
    Decode the ``rows`` of a view response *data* to :class:`.ViewRow`
    tuples, coercing keys, values, and documents.

    :raise DecodingError: If the rows are missing or any row does not match
                          the declared types.
    """
    rows = []

    for row in Rows(data):
        if 'key' not in row:
            raise DecodingError('view row without key: {!r}'.format(row))

        rows.append(ViewRow(
            Field(row, 'id', (str,)),
            Coerce(row['key'], key_type, 'key'),
            Coerce(row.get('value'), value_type, 'value'),
            Coerce(row.get('doc'), doc_type, 'doc'),
            Field(row, 'error', (str,)),
        ))

    return tuple(rows)


def DecodeSearchRows(rows:list, doc_type:object=dict) -> (SearchRow,):
    """
    Decode a list of search *rows* to :class:`.SearchRow` tuples.

    :raise DecodingError: If a row has no ID or malformed members.
    """
    decoded = []

    for row in rows:
        if not isinstance(row, dict):
            raise DecodingError('row {!r} is not a JSON object'.format(row))

        if not isinstance(row.get('id'), str):
            raise DecodingError('search row without ID: {!r}'.format(row))

        decoded.append(SearchRow(
            row['id'],
            Field(row, 'fields', (dict,), {}),
            tuple(Field(row, 'order', (list,), ())),
            Coerce(row.get('doc'), doc_type, 'doc'),
            Field(row, 'highlights', (dict,)),
        ))

    return tuple(decoded)


class FrozenMapping(Mapping):
    """
    A read-only mapping that iterates its keys in the order it was created
    with. Duplicate or unhashable keys raise a :class:`.DecodingError`.
    """

    __slots__ = ('_keys', '_index')

    def __init__(self, items:[(object, object)]=()):
        items = tuple(items)
        self._keys = tuple(k for k, _ in items)

        try:
            self._index = dict(items)
        except TypeError as e:
            raise DecodingError('unhashable key: {}'.format(e)) from e

        if len(self._index) != len(self._keys):
            raise DecodingError('duplicate keys in {!r}'.format(
                list(self._keys)
            ))

    def __getitem__(self, key:object) -> object:
        return self._index[key]

    def __iter__(self) -> iter:
        return iter(self._keys)

    def __len__(self) -> int:
        return len(self._keys)

    def __repr__(self) -> str:
        return '<{} {!r}>'.format(type(self).__name__, dict(self.items()))


class FacetBuckets(FrozenMapping):
    """
    The counts of one facet field or range dimension: bucket labels mapped to
    the number of matching documents.
    """

    __slots__ = ()

    @property
    def total(self) -> int:
        """
        The sum of all bucket counts.
        """
        return sum(self._index.values())


class Facets(FrozenMapping):
    """
    Facet field (or range dimension) names mapped to their
    :class:`.FacetBuckets`.
    """

    __slots__ = ()


class Groups(FrozenMapping):
    """
    Group keys mapped to their :class:`.Group`, in the order the service
    sorted them.
    """

    __slots__ = ()


def DecodeFacets(data:object, what:str='counts') -> Facets:
    """
    Decode a nested JSON object of ``counts`` or ``ranges`` to
    :class:`.Facets`; ``None`` is returned as is.

    :raise DecodingError: If the structure is not an object of objects
                          mapping labels to integer counts.
    """
    if data is None:
        return None

    if not isinstance(data, dict):
        raise DecodingError('"{}" is not a JSON object'.format(what))

    facets = []

    for name, buckets in data.items():
        if not isinstance(buckets, dict):
            raise DecodingError('"{}" of {} is not a JSON object'.format(
                name, what
            ))

        counts = []

        for label, count in buckets.items():
            if isinstance(count, float) and count.is_integer():
                count = int(count)

            if isinstance(count, bool) or not isinstance(count, int):
                raise DecodingError('{} count {}/{} is not an integer: {!r}'.format(
                    what, name, label, count
                ))

            counts.append((label, count))

        facets.append((name, FacetBuckets(counts)))

    return Facets(facets)


def DecodeGroups(data:dict, doc_type:object=dict) -> Groups:
    """
    Decode the ``groups`` array of a grouped search response *data*.

    :raise DecodingError: If the groups are missing or malformed.
    """
    groups = data.get('groups')

    if not isinstance(groups, list):
        raise DecodingError('grouped response has no "groups" array')

    decoded = []

    for group in groups:
        if not isinstance(group, dict):
            raise DecodingError('group {!r} is not a JSON object'.format(group))

        # the service names the group key "by"
        by = group['by'] if 'by' in group else group.get('key')
        rows = DecodeSearchRows(Rows(group), doc_type)
        total = Field(group, 'total_rows', (int,), len(rows))
        decoded.append((by, Group(by, total, rows)))

    return Groups(decoded)
