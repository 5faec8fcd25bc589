"""
.. py:module:: serializer
   :synopsis: JSON data serializer.

.. moduleauthor:: Florian Leitner <florian.leitner@gmail.com>
.. License: GNU Affero GPL v3 (http://www.gnu.org/licenses/agpl.html)

Thin configuration layer over the json package in the standard library
with settings producing the most compact encoding, as required for JSON
values embedded in query strings.
"""

from json.encoder import JSONEncoder
from json.decoder import JSONDecoder

__all__ = ['DecodingError', 'Decode', 'Encode']


class DecodingError(ValueError):
    """
    Raised when a response could be received, but its body is not valid JSON
    or does not have the expected shape or types.
    """


def IsoformatSerializer(obj):
    """
    Serialization of any object that has a `isoformat()` method to JSON,
    particularly for date and time objects. Sets and tuples become lists.
    """
    if isinstance(obj, (set, frozenset)):
        return list(obj)
    elif hasattr(obj, 'isoformat'):
        return obj.isoformat()
    else:
        raise TypeError(repr(obj) + " is not JSON serializable")


# The decoder default is pretty much it; for the encoder, the extra
# whitespaces have been eliminated and the circular reference check
# deactivated. Finally, datetime objects are serialized, too.
DECODER = JSONDecoder()

ENCODER = JSONEncoder(check_circular=False, separators=(',', ':'),
                      allow_nan=False, default=IsoformatSerializer)


def Decode(string) -> object:
    """
    Decode a JSON *string* (or UTF-8 encoded `bytes`) to a Python object.

    :raise DecodingError: If the *string* is not valid JSON.
    """
    if isinstance(string, (bytes, bytearray)):
        try:
            string = string.decode('utf-8')
        except UnicodeDecodeError as e:
            raise DecodingError('response is not UTF-8: {}'.format(e)) from e

    if not isinstance(string, str):
        raise DecodingError('cannot decode {} as JSON'.format(
            type(string).__name__
        ))

    try:
        return DECODER.decode(string)
    except ValueError as e:
        raise DecodingError('invalid JSON: {}'.format(e)) from e


def Encode(obj:object) -> str:
    """
    Encode basic Python objects as the most compact JSON strings.

    In particular, the encoder also iso-formats date and time objects
    according to `ISO 8601 <http://en.wikipedia.org/wiki/ISO_8601>`_. Note
    that the circular reference check for lists and dictionaries has been
    deactivated and that NaN values are rejected with a `ValueError`.
    """
    return ENCODER.encode(obj)
