"""
.. py:module:: libcouch
   :synopsis: A CouchDB and Cloudant client for views and faceted search.

.. moduleauthor:: Florian Leitner <florian.leitner@gmail.com>
"""

from libcouch.broker import COUCHDB_URL, Database, DesignDocument, \
        DesignDocumentManager, Document, Server
from libcouch.network import CommunicationError, HTTPError, \
        PreconditionFailed, RedirectLimitExceeded, ResourceConflict, \
        ResourceNotFound, ServerError, TransportError, Unauthorized
from libcouch.query import ConstructionError, RawJson
from libcouch.serializer import DecodingError
