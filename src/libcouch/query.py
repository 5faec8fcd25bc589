"""
.. py:module:: query
   :synopsis: Query-string encoding of request options.

.. moduleauthor:: Florian Leitner <florian.leitner@gmail.com>
.. License: GNU Affero GPL v3 (http://www.gnu.org/licenses/agpl.html)

Options are encoded according to their declared *kind*:

 * ``text`` values are sent as they are,
 * ``bool`` values as ``true`` or ``false``,
 * ``int`` values as decimal numbers,
 * ``json`` values as compact JSON text, and
 * ``json*`` values (a list) as one JSON parameter per list item.

After that, every value is percent-encoded. The search service parses
``+``, ``=``, and ``&`` inside a value as operators or separators, so these
are always escaped, even though they are legal in a query string:

>>> EncodeValue('class:mammal+test+escaping')
'class:mammal%2Btest%2Bescaping'
>>> EncodeValue(['diet<string>'])
'%5B%22diet%3Cstring%3E%22%5D'
>>> EncodeValue(True)
'true'
"""
from collections import namedtuple
from collections.abc import Mapping
from urllib.parse import quote

from libcouch import serializer

__all__ = ['ConstructionError', 'QueryOptions', 'RawJson',
           'EncodeValue', 'EncodeParams', 'Freeze']

TEXT = 'text'
BOOL = 'bool'
INT = 'int'
JSON = 'json'
JSON_EACH = 'json*'

KINDS = frozenset((TEXT, BOOL, INT, JSON, JSON_EACH))

QUERY_SAFE = "!$'()*,/:;?@"
"""
Characters left literal in query values; all others are percent-encoded.
"""

Param = namedtuple("Param", "name kind value")
"""
A single query option: its wire *name*, encoding *kind*, and *value*.
"""


class ConstructionError(ValueError):
    """
    Raised when a request is built from an unsupported option or an invalid
    combination of options; always before any network call is made.
    """


class RawJson(str):
    """
    A JSON text fragment supplied by the caller, e.g., a ranges
    specification. It is validated when the request is built and sent
    verbatim.
    """

    def decode(self) -> object:
        """
        Return the Python object represented by this fragment.

        :raise ConstructionError: If the fragment is not valid JSON.
        """
        try:
            return serializer.Decode(str(self))
        except serializer.DecodingError as e:
            raise ConstructionError('invalid JSON option value {!r}: {}'.format(
                str(self), e
            )) from e


def KindOf(value:object) -> str:
    """
    Infer the encoding kind of a plain query parameter *value*.
    """
    if isinstance(value, bool):
        return BOOL
    elif isinstance(value, int):
        return INT
    elif isinstance(value, str) and not isinstance(value, RawJson):
        return TEXT
    else:
        return JSON


def Quote(text:str) -> str:
    """
    Percent-encode a query *text*, leaving only :data:`.QUERY_SAFE`
    characters (and unreserved ones) literal.
    """
    return quote(text, safe=QUERY_SAFE)


def EncodeValue(value:object, kind:str=None) -> str:
    """
    Encode a single option *value* of the given *kind* (inferred if
    ``None``) to its percent-encoded query-string representation.
    """
    if kind is None:
        kind = KindOf(value)

    if kind == BOOL:
        text = 'true' if value else 'false'
    elif kind == INT:
        text = str(int(value))
    elif kind == JSON:
        if isinstance(value, RawJson):
            text = str(value)
        else:
            text = serializer.Encode(value)
    elif kind == TEXT:
        text = str(value)
    else:
        raise ConstructionError('cannot encode kind "{}"'.format(kind))

    return Quote(text)


def EncodeParams(params:[Param]) -> str:
    """
    Encode a sequence of :class:`.Param` tuples to a query string (without
    the leading ``?``), in order. ``json*`` parameters are repeated once per
    item in their value.
    """
    pairs = []

    for name, kind, value in params:
        if kind == JSON_EACH:
            pairs.extend('{}={}'.format(Quote(name), EncodeValue(v, JSON))
                         for v in value)
        else:
            pairs.append('{}={}'.format(Quote(name), EncodeValue(value, kind)))

    return '&'.join(pairs)


def Snapshot(name:str, value:object) -> object:
    """
    Return a copy of the JSON *value* of option *name* that shares no
    mutable state with the caller's object.

    :raise ConstructionError: If the value is not JSON serializable.
    """
    try:
        return serializer.Decode(serializer.Encode(value))
    except (TypeError, ValueError) as e:
        raise ConstructionError(
            'option "{}" is not JSON serializable: {}'.format(name, e)
        ) from e


def CheckKind(name:str, kind:str, value:object) -> object:
    """
    Return the *value* for option *name* if it is valid for its *kind*.
    JSON values are returned as snapshots (see :func:`.Snapshot`).

    :raise ConstructionError: If the value does not match.
    """
    if kind == BOOL:
        valid = isinstance(value, bool)
    elif kind == INT:
        valid = isinstance(value, int) and not isinstance(value, bool)
    elif kind == TEXT:
        valid = isinstance(value, str) and not isinstance(value, RawJson)
    elif kind == JSON_EACH:
        valid = isinstance(value, (list, tuple))
        if valid: value = tuple(Snapshot(name, v) for v in value)
    elif kind == JSON:
        if isinstance(value, RawJson):
            value.decode()
        else:
            value = Snapshot(name, value)
        valid = True
    else:
        raise ConstructionError('unknown kind "{}" of option "{}"'.format(
            kind, name
        ))

    if not valid:
        raise ConstructionError('option "{}" requires a {} value, not {!r}'.format(
            name, kind, value
        ))

    return value


def Freeze(options:dict, kinds:dict) -> 'QueryOptions':
    """
    Validate a dictionary of *options* against the option *kinds* supported
    by a request type and return an immutable :class:`.QueryOptions`
    snapshot, retaining the order of the *options*.

    Options set to ``None`` are dropped.

    :param options: A dictionary of option names to values.
    :param kinds: A dictionary of supported option names to their kinds.
    :raise ConstructionError: If an option is unsupported or invalid.
    """
    params = []

    for name, value in options.items():
        if value is None:
            continue

        if name not in kinds:
            raise ConstructionError('unsupported option "{}"'.format(name))

        kind = kinds[name]
        params.append(Param(name, kind, CheckKind(name, kind, value)))

    return QueryOptions(params)


class QueryOptions(Mapping):
    """
    An immutable, ordered mapping of option names to values, together with
    the encoding kind of each option.

    >>> opts = QueryOptions([Param('include_docs', BOOL, True),
    ...                      Param('q', TEXT, 'a=b')])
    >>> opts['include_docs']
    True
    >>> opts.encode()
    'include_docs=true&q=a%3Db'
    """

    __slots__ = ('_params',)

    def __init__(self, params:[Param]=()):
        params = tuple(Param(*p) for p in params)
        names = [p.name for p in params]

        if len(names) != len(set(names)):
            raise ConstructionError('duplicate options in {}'.format(names))

        for p in params:
            if p.kind not in KINDS:
                raise ConstructionError('unknown kind "{}" of option "{}"'.format(
                    p.kind, p.name
                ))

        self._params = params

    def __getitem__(self, name:str) -> object:
        for param in self._params:
            if param.name == name:
                return param.value

        raise KeyError(name)

    def __iter__(self) -> iter([str]):
        return iter([p.name for p in self._params])

    def __len__(self) -> int:
        return len(self._params)

    def __repr__(self) -> str:
        items = ', '.join('{}={!r}'.format(p.name, p.value)
                          for p in self._params)
        return '<{} {}>'.format(type(self).__name__, items)

    def __str__(self) -> str:
        return self.encode()

    @property
    def params(self) -> (Param,):
        """
        The :class:`.Param` tuples of this snapshot, in order.
        """
        return self._params

    def encode(self) -> str:
        """
        The query string (without ``?``) for these options.
        """
        return EncodeParams(self._params)

    def replace(self, *params:[Param]) -> 'QueryOptions':
        """
        Return a new snapshot where the given *params* replace existing
        options of the same name (in place) or are appended.
        """
        updates = {p.name: Param(*p) for p in params}
        merged = [updates.pop(p.name, p) for p in self._params]
        merged.extend(updates.values())
        return QueryOptions(merged)

    def without(self, *names:[str]) -> 'QueryOptions':
        """
        Return a new snapshot without the options of the given *names*.
        """
        return QueryOptions(p for p in self._params if p.name not in names)
