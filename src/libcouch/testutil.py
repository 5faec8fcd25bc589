"""
.. py:module:: testutil
   :synopsis: A stub transport and database mixin for the TestCases.

.. moduleauthor:: Florian Leitner <florian.leitner@gmail.com>
.. License: GNU Affero GPL v3 (http://www.gnu.org/licenses/agpl.html)

The :class:`.StubSession` replaces the sockets of a real
:class:`.network.Session` with canned responses, so the whole request path
(headers, redirects, retries, error mapping) runs without a server. Every
request sent is recorded as a :class:`.Call`.
"""
from collections import deque, namedtuple
from http import client
from urllib.parse import urlsplit, parse_qsl

from libcouch import broker, network, serializer

Call = namedtuple("Call", "method url body headers")
"""
A request received by the stub transport.
"""


class StubResponse:

    def __init__(self, status:int, data:bytes, headers:dict):
        self.status = status
        self.msg = client.HTTPMessage()
        self._data = data

        for name, value in headers.items():
            self.msg[name] = value

    def getheader(self, name:str, default:str=None) -> str:
        return self.msg.get(name, default)

    def read(self) -> bytes:
        return self._data

    def close(self):
        pass


class StubConnection:

    def __init__(self, session:'StubSession', url):
        self.session = session
        self.base = '{}://{}'.format(url.scheme, url.netloc)
        self.sock = True

    def request(self, method:str, selector:str, body=None, headers=None):
        self.session.calls.append(Call(method, self.base + selector, body,
                                       network.Headers(headers)))

    def getresponse(self) -> StubResponse:
        return self.session.nextResponse()

    def close(self):
        self.sock = None


class StubSession(network.Session):
    """
    A session that answers requests with the responses queued by
    :meth:`.respond` and :meth:`.fail`, in order.
    """

    def __init__(self, **kwargs):
        super(StubSession, self).__init__(**kwargs)
        self.calls = []
        self.responses = deque()

    def respond(self, data:object=None, status:int=200,
                headers:dict=None) -> 'StubSession':
        """
        Queue a response; *data* is sent as is if it is `str` or `bytes`,
        and encoded as JSON otherwise.
        """
        if data is None:
            body = b''
        elif isinstance(data, bytes):
            body = data
        elif isinstance(data, str):
            body = data.encode('utf-8')
        else:
            body = serializer.Encode(data).encode('utf-8')

        headers = dict(headers or {})
        headers.setdefault('Content-Type', 'application/json')
        self.responses.append(StubResponse(status, body, headers))
        return self

    def fail(self, error:Exception) -> 'StubSession':
        """
        Queue an *error* to raise instead of a response.
        """
        self.responses.append(error)
        return self

    def nextResponse(self) -> StubResponse:
        if not self.responses:
            raise AssertionError('unexpected request')

        response = self.responses.popleft()

        if isinstance(response, Exception):
            raise response

        return response

    @property
    def last(self) -> Call:
        """
        The last request received.
        """
        return self.calls[-1]

    def _connectTo(self, url) -> StubConnection:
        if url.scheme not in ('http', 'https'):
            raise ValueError('scheme {} not supported'.format(url.scheme))

        return StubConnection(self, url)


class StubDatabaseMixin(object):
    """
    Sets up a :class:`.StubSession` with a server and an ``animaldb``
    database using it.
    """

    url = 'http://localhost:5984/'

    def setUp(self):
        self.session = StubSession()
        self.server = broker.Server(self.url, session=self.session)
        self.db = broker.Database(self.server.resource('animaldb'),
                                  'animaldb')

    def respond(self, data:object=None, status:int=200,
                headers:dict=None) -> StubSession:
        return self.session.respond(data, status, headers)

    @property
    def last(self) -> Call:
        return self.session.last

    def path(self, call:Call=None) -> str:
        """
        The path of the *call* (default: the last one).
        """
        return urlsplit((call or self.last).url).path

    def query(self, call:Call=None) -> str:
        """
        The raw query string of the *call* (default: the last one).
        """
        return urlsplit((call or self.last).url).query

    def params(self, call:Call=None) -> [(str, str)]:
        """
        The decoded query parameters of the *call* (default: the last one).
        """
        return parse_qsl(self.query(call), keep_blank_values=True)
