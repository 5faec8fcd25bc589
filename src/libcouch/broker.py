"""
.. py:module:: broker
   :synopsis: Servers, databases, and documents of a CouchDB (or Cloudant)
              service.

.. moduleauthor:: Florian Leitner <florian.leitner@gmail.com>
.. License: GNU Affero GPL v3 (http://www.gnu.org/licenses/agpl.html)

A simple usage example, against a running server::

    from libcouch import Server
    server = Server()
    db = server.create('python-tests')
    doc_id, doc_rev = db.save({'type': 'Person', 'name': 'John Doe'})
    doc = db[doc_id]
    doc['name'] # 'John Doe'
    del db[doc.id]
    del server['python-tests']

Views and search indexes are queried with the builders returned by
:meth:`.Database.view` and :meth:`.Database.search`; design documents are
managed with :attr:`.Database.design`.
"""
import logging
import os
import re

from libcouch import network, serializer
from libcouch.search import SearchRequestBuilder
from libcouch.views import ViewRequestBuilder

__all__ = ['Server', 'Database', 'Document', 'DesignDocument',
           'DesignDocumentManager']
__docformat__ = 'restructuredtext en'


COUCHDB_URL = os.environ.get('COUCHDB_URL', 'http://localhost:5984/')
"""
The default CouchDB URL, either ``http://localhost:5984/`` or fetched from the
environment.
"""

VALID_DB_NAME = re.compile(r'^[a-z][a-z0-9_$()+/-]*$')
"""
A RegEx describing valid database names.
"""

SPECIAL_DB_NAMES = frozenset(('_users', '_replicator'))
"""
Built-in DB names not matching the :data:`.VALID_DB_NAME` RegEx.
"""

DESIGN_PREFIX = '_design/'


def DesignId(name:str) -> str:
    """
    Return the full ID of a design document *name*, adding the ``_design/``
    prefix if it is missing.

    >>> DesignId('views101')
    '_design/views101'
    >>> DesignId('_design/views101')
    '_design/views101'
    """
    if not name:
        raise ValueError('design document name cannot be empty')

    return name if name.startswith(DESIGN_PREFIX) else DESIGN_PREFIX + name


def DesignPathFromName(name:str, type:str) -> [str]:
    """
    Expand a 'design-doc/foo' style name to its full path as a list of
    segments.

    If *name* starts with '_', just split the name at all slashes. Otherwise,
    split the name on the first slash and return the following segments:
    ``['_design', name_1, type, name_2]``, which is useful to handle
    the special design document paths of views and search indexes.

    >>> DesignPathFromName('views101/animals', '_search')
    ['_design', 'views101', '_search', 'animals']
    >>> DesignPathFromName('_all_docs', '_view')
    ['_all_docs']
    """
    if name.startswith('_'):
        return name.split('/')

    if '/' not in name:
        raise ValueError('"{}" is not a "design/index" name'.format(name))

    design, name = name.split('/', 1)
    return ['_design', design, type, name]


def DocPath(id:str) -> list:
    """
    Return the path segments for the given document *ID*.

    Splits IDs that start with a reserved segment (starting with '_'), e.g.
    ``"_design/foo/bar"`` at the first ``/``, resulting in two segments:
    ``["_design", "foo/bar"]``.
    """
    if id[:1] == '_':
        return id.split('/', 1)
    else:
        return [id]


def ValidateDbName(name:str) -> str:
    """
    Return the name if it is a valid DB name and raise a :exc:`ValueError`
    otherwise.
    """
    if name not in SPECIAL_DB_NAMES and not VALID_DB_NAME.match(name):
        raise ValueError('invalid database name "{}"'.format(name))

    return name


class Document(dict):
    """
    Representation of a document in the database.

    This is basically just a dictionary with the two additional properties
    `id` and `rev`, which contain the document ID and revision, respectively.
    """

    def __repr__(self):
        return '<{} {}@{}>'.format(type(self).__name__, self.id, self.rev)

    @property
    def id(self) -> str:
        """
        The document ID or ``None``.
        """
        return self.get('_id')

    @id.setter
    def id(self, _id:str):
        self['_id'] = _id

    @property
    def rev(self) -> str:
        """
        The document revision or ``None``.
        """
        return self.get('_rev')

    @rev.setter
    def rev(self, _rev:str):
        self['_rev'] = _rev


class DesignDocument(Document):
    """
    A design document, holding the map/reduce ``views`` and the search
    ``indexes`` of a database.
    """

    @property
    def views(self) -> dict:
        """
        The view definitions, by view name (or an empty dictionary).
        """
        return self.get('views', {})

    @property
    def indexes(self) -> dict:
        """
        The search index definitions, by index name (or an empty dictionary).
        """
        return self.get('indexes', {})


class DesignDocumentManager:
    """
    Fetch, synchronize, and remove the design documents of a database.

    Design document IDs may be given with or without their ``_design/``
    prefix.
    """

    def __init__(self, db:'Database'):
        self.db = db
        self.L = logging.getLogger("DesignDocumentManager")

    @staticmethod
    def fromFile(path:str) -> DesignDocument:
        """
        Load a design document from a JSON file at *path*.

        If the document has no ``_id``, the file name without its extension
        is used as the design document name.

        :raise DecodingError: If the file content is not a JSON object.
        """
        with open(path, encoding='utf-8') as stream:
            data = serializer.Decode(stream.read())

        if not isinstance(data, dict):
            raise serializer.DecodingError(
                '{} does not contain a JSON object'.format(path)
            )

        doc = DesignDocument(data)

        if doc.id is None:
            doc.id = os.path.splitext(os.path.basename(path))[0]

        doc.id = DesignId(doc.id)
        return doc

    def get(self, id:str) -> DesignDocument:
        """
        Return the design document with the given *ID* or ``None``.
        """
        doc = self.db.get(DesignId(id))
        return None if doc is None else DesignDocument(doc)

    def put(self, *docs:[dict]) -> [str]:
        """
        Synchronize the given design documents with the database, creating
        or updating them, and return their current revisions.

        Documents equal to the stored version (ignoring the revision) are
        not updated.
        """
        revs = []

        for doc in docs:
            if doc.get('_id') is None:
                raise ValueError('design document without ID')

            doc['_id'] = DesignId(doc['_id'])
            stored = self.db.get(doc['_id'])

            if stored is not None:
                doc['_rev'] = stored['_rev']

                if dict(stored) == dict(doc):
                    self.L.debug("%s unchanged", doc['_id'])
                    revs.append(stored['_rev'])
                    continue
            else:
                doc.pop('_rev', None)

            self.L.debug("saving %s", doc['_id'])
            revs.append(self.db.save(doc)[1])

        return revs

    def remove(self, id:str):
        """
        Remove the design document with the given *ID*.

        :raise KeyError: If no such design document exists.
        """
        del self.db[DesignId(id)]

    def list(self) -> [DesignDocument]:
        """
        Return all design documents of the database.
        """
        request = self.db.view('_all_docs', str, dict, DesignDocument) \
                         .startKey(DESIGN_PREFIX) \
                         .endKey('_design0') \
                         .includeDocs() \
                         .build()
        return request.getResponse().docs()


class Database:
    """
    Representation of a database on a CouchDB server.

    This class provides a dictionary-like interface to databases: documents
    are retrieved by their ID using item access, and stored or updated by
    assigning them to an ID; ``in`` tests if a document exists, iteration
    yields the IDs of all documents, and :func:`len` their number.
    """

    def __init__(self, url, name:str=None, session:network.Session=None):
        """
        :param url: A URL or the path of the DB as `str` or a
                    :class:`.network.Resource`; a URL must be fully qualified,
                    including the scheme (http[s]), otherwise the
                    :data:`.COUCHDB_URL` is prepended to the *url*.
        :param name: The name of the DB, usually set automagically.
        :param session: A :class:`.network.Session` object; if ``None``, a new
                        `Session` is created.
        """
        if isinstance(url, str):
            if not url.startswith('http'):
                url = COUCHDB_URL + url
            self.resource = network.Resource(url, session)
        else:
            self.resource = url
        self._name = name

    def __repr__(self) -> str:
        return '<{} {!r}>'.format(type(self).__name__, self.name)

    def __contains__(self, id:str) -> bool:
        """
        Return ``True`` if the DB contains a document with the specified ID.
        """
        try:
            self.resource.head(*DocPath(id))
            return True
        except network.ResourceNotFound:
            return False

    def __iter__(self) -> iter([str]):
        """
        Return the ID strings of all documents in the DB.
        """
        response = self.view('_all_docs', str).build().getResponse()
        return iter([row.id for row in response])

    def __len__(self) -> int:
        """
        Return the number of documents in the DB.
        """
        return int(self.info()['doc_count'])

    def __delitem__(self, id:str):
        """
        Remove the document with the specified *ID* from the database.

        :raise KeyError: If no such document exists.
        """
        path = DocPath(id)

        try:
            response = self.resource.head(*path)
        except network.ResourceNotFound:
            raise KeyError(id)

        self.resource.deleteJson(*path,
                                 rev=response.headers['etag'].strip('"'))

    def __getitem__(self, id:str) -> Document:
        """
        Return the :class:`.Document` with the specified *ID*.

        :raise KeyError: If no such document exists.
        """
        try:
            response = self.resource.getJson(*DocPath(id))
        except network.ResourceNotFound:
            raise KeyError(id)

        return Document(response.data)

    def __setitem__(self, id:str, document:dict):
        """
        Create or update a *document* with the specified *ID*.

        :param document: The document; either a plain dictionary (even without
                         an ``_id`` or ``_rev``), or a :class:`.Document`.
        :raise libcouch.network.ResourceConflict: If the document's
            revision value does not match the value in the DB.
        """
        response = self.resource.putJson(*DocPath(id), json=document)
        document['_id'] = response.data['id']
        document['_rev'] = response.data['rev']

    @property
    def name(self) -> str:
        """
        The name string of the database, unescaped.

        Note that this may trigger a request to the server unless the name has
        already been cached by the `info()` method.
        """
        if self._name is None: self.info()
        return self._name

    @property
    def design(self) -> DesignDocumentManager:
        """
        The :class:`.DesignDocumentManager` of this database.
        """
        return DesignDocumentManager(self)

    def info(self) -> dict:
        """
        Return information about the database as a dictionary.
        """
        response = self.resource.getJson()
        self._name = response.data['db_name']
        return response.data

    def save(self, document:dict, **options) -> (str, str):
        """
        **Create** a new document or **update** an existing document.

        If *document* has no ``"_id"`` then the server will allocate a random
        ID and a new document will be created. Otherwise the document's ID will
        be used to identity the document to create or update. Trying to update
        an existing document with an incorrect ``"_rev"`` will raise a
        :exc:`.network.ResourceConflict` exception.

        :param document: The document to store, as `dict` or :class:`.Document`.
        :param options: Optional query parameters, e.g., ``batch='ok'``.
        :return: A `tuple` of the updated ``(id, rev)`` values of the document.
        """
        if '_id' in document:
            response = self.resource.putJson(*DocPath(document['_id']),
                                             json=document, **options)
        else:
            response = self.resource.postJson(json=document, **options)

        id, rev = response.data['id'], response.data.get('rev')
        document['_id'] = id

        if rev is not None: # Not present for batch='ok'
            document['_rev'] = rev

        return id, rev

    def delete(self, doc:dict) -> bool:
        """
        Delete the given document from the database.

        Use this method in preference over ``del db[id]`` to ensure you're
        deleting the revision that you had previously retrieved.

        :param doc: A dictionary or `Document` object holding the document
                    data.
        :return: A `bool` indicating success.
        :raise libcouch.network.ResourceConflict: If the document was
            updated in the database.
        :raise ValueError: If either ID or revision of the document are not
                           set.
        """
        if doc.get('_id') is None:
            raise ValueError('document ID cannot be None')
        if '_rev' not in doc:
            raise ValueError('document revision must be set')

        response = self.resource.deleteJson(*DocPath(doc['_id']),
                                            rev=doc['_rev'])
        return response.data['ok']

    def get(self, id:str, default:object=None, **options) -> Document:
        """
        Return the document with the specified ID, or *default* if it does
        not exist.

        :param options: Optional query parameters, e.g., ``rev='1-abc'`` or
                        ``conflicts=True``.
        """
        try:
            response = self.resource.getJson(*DocPath(id), **options)
        except network.ResourceNotFound:
            return default

        return Document(response.data)

    def bulk(self, documents:[dict], strict:bool=False) -> [(bool, str, str)]:
        """
        Perform a bulk update, insertion, or deletion of the given documents
        using a single HTTP request.

        The return value of this method is a `list` containing a `tuple` for
        every element in the *documents* iterable. Each `tuple` is of the form
        ``(success, docid, rev_or_exc)``, where ``success`` is a `bool`
        indicating whether the change succeeded, ``docid`` is the ID of the
        document, and ``rev_or_exc`` is either the new document revision, or
        an exception instance (e.g. `ResourceConflict`) if the change failed.

        :param documents: A sequence of dictionaries or `Document` objects.
        :param strict: If all changes must succeed for any change to happen
                       (aka ``'all_or_nothing': true``}
        :return: A `list` of (`bool`, `str`, `str`) `tuples`.
        """
        documents = list(documents)
        content = dict(docs=documents)
        if strict: content['all_or_nothing'] = True
        response = self.resource.postJson('_bulk_docs', json=content)
        results = []

        for doc, result in zip(documents, response.data):
            if 'error' in result:
                if result['error'] == 'conflict':
                    exc_type = network.ResourceConflict
                else:
                    exc_type = network.ServerError

                results.append((False, result.get('id'), exc_type(
                    result.get('reason') or result['error'],
                    error=result['error'], reason=result.get('reason')
                )))
            else:
                doc['_id'] = result['id']
                doc['_rev'] = result['rev']
                results.append((True, result['id'], result['rev']))

        return results

    def view(self, name:str, key_type:type=object,
             value_type:object=object,
             doc_type:object=Document) -> ViewRequestBuilder:
        """
        Return a :class:`.views.ViewRequestBuilder` for the view *name*
        (``"design/view"``, or a special view like ``"_all_docs"``) with
        keys of *key_type* and values of *value_type*.
        """
        return ViewRequestBuilder(self.resource,
                                  DesignPathFromName(name, '_view'),
                                  key_type, value_type, doc_type)

    def search(self, name:str) -> SearchRequestBuilder:
        """
        Return a :class:`.search.SearchRequestBuilder` for the search index
        *name* (``"design/index"``).
        """
        return SearchRequestBuilder(self.resource,
                                    DesignPathFromName(name, '_search'),
                                    Document)


class Server:
    """
    Representation of a CouchDB server.

    This class behaves like a dictionary of databases: iterating over the
    server yields the database names, ``in`` tests if a database exists, and
    item access returns a :class:`.Database`.
    """

    def __init__(self, url:object=COUCHDB_URL,
                 session:network.Session=None):
        """
        :param url: The URL of the server (for example
                    ``http://localhost:5984/``) or a
                    :class:`.network.Resource` instance.
        :param session: An :class:`.network.Session` instance.
        """
        if isinstance(url, str):
            self.resource = network.Resource(url, session)
        else:
            self.resource = url # treat as a Resource object

    def __contains__(self, name:str) -> bool:
        """
        Return ``True`` if the server contains a database with the specified
        *name*, ``False`` otherwise.
        """
        try:
            self.resource.head(ValidateDbName(name))
            return True
        except network.ResourceNotFound:
            return False

    def __iter__(self) -> iter([str]):
        """
        Iterate over the names of all databases.
        """
        response = self.resource.getJson('_all_dbs')
        return iter(response.data)

    def __len__(self) -> int:
        """
        Return the number of databases.
        """
        response = self.resource.getJson('_all_dbs')
        return len(response.data)

    def __repr__(self) -> str:
        return '<{} {!r}>'.format(type(self).__name__, self.resource.url)

    def __delitem__(self, name:str):
        """
        Remove the database with the specified *name*.

        :raise libcouch.network.ResourceNotFound: If no database with that
            *name* exists.
        """
        self.resource.deleteJson(ValidateDbName(name))

    def __getitem__(self, name:str) -> Database:
        """
        Return a :class:`.Database` object representing the database with the
        specified *name*.

        :raise KeyError: If no database with that *name* exists.
        """
        db = Database(self.resource(ValidateDbName(name)), name)

        try:
            db.resource.head() # actually make a request to the database
        except network.ResourceNotFound:
            raise KeyError(name)

        return db

    def version(self) -> str:
        """
        The version string of the CouchDB server.
        """
        response = self.resource.getJson()
        return response.data['version']

    def uuids(self, count:int=None) -> [str]:
        """
        Retrieve a list of uuids.

        :param count: The number of uuids to fetch
                      (``None`` -- get as many as the server sends).
        """
        response = self.resource.getJson('_uuids', count=count)
        return response.data['uuids']

    def create(self, name:str) -> Database:
        """
        Create and return a new :class:`.Database` with the given name.

        :raise libcouch.network.PreconditionFailed: If a database with
            that *name* already exists.
        """
        self.resource.putJson(ValidateDbName(name))
        return Database(self.resource(name), name)

    def delete(self, name:str):
        """
        Delete the database with the specified *name*.

        Same as ``del server[name]``.
        """
        del self[name]

    def replicate(self, source:str, target:str, create_target:bool=False,
                  **options) -> dict:
        """
        Trigger the replication of changes from the database URL *source* to
        the database URL *target* on the server.

        Options:

         * ``cancel=True``: Cancel replication.
         * ``continuous=True``: Activate continuous replication.
         * ``filter="mydoc/myfilter"``: Activate filtered replication.
         * ``doc_ids=["foo", "bar", "baz"]``: Replicate the specified
           Documents.

        :param source: URL of the source database.
        :param target: URL of the target database.
        :param create_target: Create the target database if it is missing.
        :param options: Optional replication arguments.
        :return: The replication status reported by the server.
        """
        data = {'source': source, 'target': target}
        if create_target: data['create_target'] = True
        data.update(options)
        response = self.resource.postJson('_replicate', json=data)
        return response.data
