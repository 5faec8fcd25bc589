from unittest import main, TestCase

from libcouch import network, serializer
from libcouch.broker import Document
from libcouch.query import ConstructionError
from libcouch.serializer import DecodingError
from libcouch.testutil import StubDatabaseMixin

__author__ = 'Florian Leitner'

VIEW_PATH = '/animaldb/_design/animals/_view/by_class'


def Rows(*items, **meta):
    rows = [{'id': i, 'key': k, 'value': v} for i, k, v in items]
    return dict(rows=rows, **meta)


class ViewRequestTests(StubDatabaseMixin, TestCase):

    def testGetResponse(self):
        self.respond(Rows(('lemur', 'mammal', 1), ('llama', 'mammal', 1),
                          total_rows=10, offset=3))
        response = self.db.view('animals/by_class', str, int) \
                          .reduce(False).limit(2).build().getResponse()
        self.assertEqual(VIEW_PATH, self.path())
        self.assertListEqual([('reduce', 'false'), ('limit', '2')],
                             self.params())
        self.assertEqual(2, len(response))
        self.assertEqual(10, response.total_rows)
        self.assertEqual(3, response.offset)
        self.assertIsNone(response.update_seq)
        self.assertListEqual(['mammal', 'mammal'], response.keys())
        self.assertListEqual([1, 1], response.values())
        self.assertListEqual(['lemur', 'llama'],
                             [row.id for row in response])
        self.assertEqual(1, response.page)

    def testKeyOptionsAreJson(self):
        self.respond(Rows())
        self.db.view('animals/by_class', str).startKey('a').endKey('m') \
               .inclusiveEnd(False).descending().build().getResponse()
        self.assertListEqual([('startkey', '"a"'), ('endkey', '"m"'),
                              ('inclusive_end', 'false'),
                              ('descending', 'true')], self.params())

    def testComplexKeys(self):
        self.respond(Rows(('a', ['mammal', 2], None)))
        response = self.db.view('animals/by_class', list) \
                          .key(['mammal', 2]).build().getResponse()
        self.assertEqual('key=%5B%22mammal%22,2%5D', self.query())
        self.assertListEqual([['mammal', 2]], response.keys())

    def testBuiltKeysAreCopies(self):
        key = ['mammal', 2]
        request = self.db.view('animals/by_class', list).key(key).build()
        key.append('x')
        self.assertEqual('key=%5B%22mammal%22,2%5D',
                         request.request.query_string)
        keys = [['mammal', 2]]
        request = self.db.view('animals/by_class', list).keys(*keys).build()
        keys[0].append('x')
        self.assertDictEqual({'keys': [['mammal', 2]]}, request.request.body)

    def testSettingTwiceOverwrites(self):
        self.respond(Rows())
        self.db.view('animals/by_class').limit(1).skip(2).limit(5) \
               .build().getResponse()
        self.assertEqual('limit=5&skip=2', self.query())

    def testGetSingleValue(self):
        self.respond(Rows((None, None, 42)))
        value = self.db.view('animals/by_class', str, int) \
                       .reduce().build().getSingleValue()
        self.assertEqual(42, value)
        self.assertEqual('reduce=true', self.query())

    def testGetSingleValueWithoutRows(self):
        self.respond(Rows())
        request = self.db.view('animals/by_class', str, int).build()
        self.assertIsNone(request.getSingleValue())

    def testGroupLevel(self):
        self.respond(Rows((None, ['mammal'], 3)))
        response = self.db.view('animals/by_class', list, int) \
                          .groupLevel(1).build().getResponse()
        self.assertEqual('group_level=1', self.query())
        self.assertListEqual([3], response.values())

    def testKeysArePosted(self):
        self.respond(Rows(('a', 'a', 1), ('b', 'b', 2)))
        self.db.view('animals/by_class', str).keys('a', 'b') \
               .includeDocs(False).build().getResponse()
        call = self.last
        self.assertEqual('POST', call.method)
        self.assertEqual('include_docs=false', self.query())
        self.assertDictEqual({'keys': ['a', 'b']},
                             serializer.Decode(call.body))

    def testIncludeDocs(self):
        self.respond({'rows': [{'id': 'a', 'key': 'a', 'value': None,
                                'doc': {'_id': 'a', '_rev': '1-x'}}]})
        response = self.db.view('animals/by_class', str) \
                          .includeDocs().build().getResponse()
        doc = response.docs()[0]
        self.assertIsInstance(doc, Document)
        self.assertEqual('1-x', doc.rev)

    def testDecodeFunction(self):
        self.respond(Rows(('a', 'a', {'n': 1}), ('b', 'b', {'n': 2})))
        response = self.db.view('animals/by_class', str,
                                lambda v: v['n']).build().getResponse()
        self.assertListEqual([1, 2], response.values())

    def testDecodingErrors(self):
        self.respond(Rows(('a', 1, None)))
        request = self.db.view('animals/by_class', str).build()
        self.assertRaises(DecodingError, request.getResponse)

        self.respond(Rows(('a', 'a', 'x')))
        request = self.db.view('animals/by_class', str, int).build()
        self.assertRaises(DecodingError, request.getResponse)

        self.respond(Rows(('a', 'a', {})))
        request = self.db.view('animals/by_class', str,
                               lambda v: v['n']).build()
        self.assertRaises(DecodingError, request.getResponse)

    def testResponseNotAnObject(self):
        self.respond([1, 2])
        request = self.db.view('animals/by_class').build()
        self.assertRaises(DecodingError, request.getResponse)

    def testCommunicationError(self):
        self.respond({'error': 'not_found', 'reason': 'missing_named_view'},
                     status=404)
        request = self.db.view('animals/by_class').build()

        with self.assertRaises(network.CommunicationError) as ctx:
            request.getResponse()

        self.assertEqual(404, ctx.exception.status)
        self.assertEqual('missing_named_view', ctx.exception.reason)

    def testExecuteOnce(self):
        self.respond(Rows())
        request = self.db.view('animals/by_class').build()
        request.getResponse()
        self.assertRaises(RuntimeError, request.getResponse)
        self.assertRaises(RuntimeError, request.getSingleValue)
        self.assertEqual(1, len(self.session.calls))

    def testAllDocs(self):
        self.respond(Rows(('a', 'a', {'rev': '1-x'})))
        response = self.db.view('_all_docs', str).build().getResponse()
        self.assertEqual('/animaldb/_all_docs', self.path())
        self.assertListEqual(['a'], response.keys())


class ViewPaginationTests(StubDatabaseMixin, TestCase):

    def testPages(self):
        self.respond(Rows(('id1', 'a', 1), ('id2', 'b', 1), ('id3', 'c', 1),
                          total_rows=4, offset=0))
        self.respond(Rows(('id3', 'c', 1), ('id4', 'd', 1),
                          total_rows=4, offset=2))
        page = self.db.view('animals/by_class', str, int).includeDocs(False) \
                      .rowsPerPage(2).build().getResponse()
        self.assertListEqual([('include_docs', 'false'), ('limit', '3')],
                             self.params())
        self.assertListEqual(['id1', 'id2'], [row.id for row in page])
        self.assertTrue(page.hasNextPage())

        page = page.nextPage()
        self.assertListEqual([('include_docs', 'false'), ('limit', '3'),
                              ('startkey', '"c"'),
                              ('startkey_docid', 'id3')], self.params())
        self.assertEqual(2, page.page)
        self.assertListEqual(['id3', 'id4'], [row.id for row in page])
        self.assertFalse(page.hasNextPage())
        self.assertIsNone(page.nextPage())
        self.assertEqual(2, len(self.session.calls))

    def testUnpaginatedResponseHasNoNextPage(self):
        self.respond(Rows(('id1', 'a', 1), ('id2', 'b', 1)))
        page = self.db.view('animals/by_class', str).limit(1) \
                      .build().getResponse()
        self.assertFalse(page.hasNextPage())
        self.assertIsNone(page.nextPage())

    def testPaginationConflicts(self):
        view = self.db.view('animals/by_class', str)
        self.assertRaises(ConstructionError, view.rowsPerPage, 0)
        self.assertRaises(ConstructionError,
                          view.rowsPerPage(2).limit(10).build)
        self.assertRaises(ConstructionError,
                          self.db.view('a/b').rowsPerPage(2).keys('a').build)


class ViewConstructionTests(StubDatabaseMixin, TestCase):

    def assertInvalid(self, builder):
        self.assertRaises(ConstructionError, builder.build)
        self.assertListEqual([], self.session.calls)

    def testUnsupportedKeyType(self):
        self.assertInvalid(self.db.view('animals/by_class', set))
        self.assertInvalid(self.db.view('animals/by_class', str, 'int'))

    def testKeyTypeMismatch(self):
        self.assertInvalid(self.db.view('animals/by_class', str).key(1))
        self.assertInvalid(self.db.view('animals/by_class', int).startKey('a'))
        self.assertInvalid(self.db.view('animals/by_class', int).keys(1, 'b'))

    def testKeysExcludeKeyRanges(self):
        self.assertInvalid(self.db.view('a/b', str).keys('a').key('b'))
        self.assertInvalid(self.db.view('a/b', str).keys('a').startKey('b'))

    def testReduceConflicts(self):
        self.assertInvalid(self.db.view('a/b').reduce(False).group())
        self.assertInvalid(self.db.view('a/b').reduce(False).groupLevel(2))
        self.assertInvalid(self.db.view('a/b').reduce().includeDocs())

    def testNegativeNumbers(self):
        self.assertInvalid(self.db.view('a/b').limit(-1))
        self.assertInvalid(self.db.view('a/b').skip(-1))
        self.assertInvalid(self.db.view('a/b').groupLevel(-1))

    def testWrongOptionTypes(self):
        self.assertInvalid(self.db.view('a/b').limit('10'))
        self.assertInvalid(self.db.view('a/b').descending('yes'))
        self.assertInvalid(self.db.view('a/b').startKeyDocId(1))

    def testStale(self):
        self.assertInvalid(self.db.view('a/b').stale('maybe'))
        request = self.db.view('a/b').stale('update_after').build()
        self.assertEqual('stale=update_after', request.request.query_string)

    def testUnsupportedOption(self):
        self.assertInvalid(self.db.view('a/b').option('bookmark', 'x'))

    def testValidOption(self):
        request = self.db.view('a/b').option('update_seq', True).build()
        self.assertEqual('update_seq=true', request.request.query_string)


if __name__ == '__main__':
    main()
