from collections import OrderedDict
from unittest import main, TestCase

from libcouch.broker import Document
from libcouch.query import ConstructionError, RawJson
from libcouch.serializer import DecodingError
from libcouch.testutil import StubDatabaseMixin

__author__ = 'Florian Leitner'

SEARCH_URL = 'http://localhost:5984/animaldb/_design/views101/_search/animals'

RANGES = '{ "min_length": {"small": "[0 TO 1.0]",' \
         '"medium": "[1.1 TO 3.0]", "large": "[3.1 TO 9999999]"} }'


def Row(id, *order, **doc):
    row = {'id': id, 'order': list(order), 'fields': {'default': id}}

    if doc:
        doc['_id'] = id
        row['doc'] = doc

    return row


LEMUR = Row('lemur', 1.0, 0, **{'class': 'mammal', 'diet': 'omnivore'})
LLAMA = Row('llama', 1.0, 1, **{'class': 'mammal', 'diet': 'herbivore'})


class SearchEscapingTests(StubDatabaseMixin, TestCase):

    def assertEscaped(self, expected, q):
        request = self.db.search('views101/animals').includeDocs().build(q)
        self.assertEqual(SEARCH_URL + '?include_docs=true&q=' + expected,
                         request.request.url(self.db.resource))

    def testEscapedPlus(self):
        self.assertEscaped('class:mammal%2Btest%2Bescaping',
                           'class:mammal+test+escaping')

    def testEscapedEquals(self):
        self.assertEscaped('class:mammal%3Dtest%3Descaping',
                           'class:mammal=test=escaping')

    def testEscapedAmpersand(self):
        self.assertEscaped('class:mammal%26test%26escaping',
                           'class:mammal&test&escaping')

    def testSentQueryIsEscaped(self):
        self.respond({'total_rows': 0, 'rows': []})
        self.db.search('views101/animals').includeDocs() \
               .querySearchResult('class:mammal+test+escaping')
        self.assertEqual(SEARCH_URL + '?include_docs=true&q='
                         'class:mammal%2Btest%2Bescaping', self.last.url)


class SearchTests(StubDatabaseMixin, TestCase):

    def testCounts(self):
        self.respond({
            'total_rows': 2, 'bookmark': 'g1AAAAB', 'rows': [LEMUR, LLAMA],
            'counts': {'class': {'mammal': 2},
                       'diet': {'herbivore': 1, 'omnivore': 1}},
        })
        result = self.db.search('views101/animals').limit(10).includeDocs() \
                        .counts(['class', 'diet']).querySearchResult('l*')
        self.assertEqual('limit=10&include_docs=true&'
                         'counts=%5B%22class%22,%22diet%22%5D&q=l*',
                         self.query())
        self.assertEqual(2, len(result.counts))
        self.assertEqual(1, len(result.counts['class']))
        self.assertEqual(2, result.counts['class']['mammal'])
        self.assertEqual(2, len(result.counts['diet']))
        self.assertEqual(1, result.counts['diet']['herbivore'])
        self.assertEqual(1, result.counts['diet']['omnivore'])
        self.assertEqual('g1AAAAB', result.bookmark)
        self.assertEqual(2, result.total_rows)
        self.assertFalse(result.grouped)
        self.assertIsNone(result.groups)
        self.assertIsNone(result.ranges)
        self.assertEqual(2, len(result.rows))

        for row in result.rows:
            self.assertIsInstance(row.doc, Document)
            self.assertTrue(row.fields)
            self.assertTrue(row.id)
            self.assertTrue(row.order)

    def testQueryReturnsDocuments(self):
        self.respond({'total_rows': 2, 'rows': [LEMUR, LLAMA]})
        animals = self.db.search('views101/animals').limit(10) \
                         .query('l*')
        self.assertListEqual([('limit', '10'), ('include_docs', 'true'),
                              ('q', 'l*')], self.params())
        self.assertListEqual(['lemur', 'llama'], [a.id for a in animals])

    def testCustomDocumentType(self):
        self.respond({'total_rows': 1, 'rows': [LEMUR]})
        diets = self.db.search('views101/animals') \
                       .query('l*', lambda doc: doc['diet'])
        self.assertListEqual(['omnivore'], diets)

    def testGroups(self):
        self.respond({'total_rows': 2, 'groups': [
            {'by': 'mammal', 'total_rows': 2, 'rows': [LEMUR, LLAMA]},
        ]})
        groups = self.db.search('views101/animals').limit(10) \
                        .counts(['class', 'diet']).groupField('class') \
                        .queryGroups('l*')
        params = self.params()
        self.assertIn(('group_field', 'class<string>'), params)
        self.assertIn(('include_docs', 'true'), params)
        self.assertEqual(('q', 'l*'), params[-1])
        self.assertIsInstance(groups, OrderedDict)
        self.assertEqual(1, len(groups))
        self.assertEqual(2, len(groups['mammal']))

    def testGroupSort(self):
        self.respond({'total_rows': 2, 'groups': [
            {'by': 'omnivore', 'total_rows': 1, 'rows': [LEMUR]},
            {'by': 'herbivore', 'total_rows': 1, 'rows': [LLAMA]},
        ]})
        groups = self.db.search('views101/animals').includeDocs() \
                        .groupField('diet').groupSort(['-diet<string>']) \
                        .queryGroups('l*')
        self.assertIn(('group_sort', '["-diet<string>"]'), self.params())
        self.assertListEqual(['omnivore', 'herbivore'], list(groups))

    def testNumericGroupField(self):
        request = self.db.search('views101/animals') \
                         .groupField('min_length', True).groupLimit(3) \
                         .build('l*')
        self.assertEqual('group_field=min_length%3Cnumber%3E&group_limit=3'
                         '&q=l*', request.request.query_string)

    def testGroupedResult(self):
        self.respond({'total_rows': 2, 'groups': [
            {'by': 'mammal', 'total_rows': 2, 'rows': [LEMUR, LLAMA]},
        ]})
        result = self.db.search('views101/animals').groupField('class') \
                        .querySearchResult('l*')
        self.assertTrue(result.grouped)
        self.assertIsNone(result.rows)
        self.assertIsNone(result.bookmark)
        self.assertEqual(2, result.groups['mammal'].total_rows)
        self.assertListEqual(['lemur', 'llama'],
                             [doc.id for doc in result.docs()])

    def testRanges(self):
        self.respond({'total_rows': 8, 'rows': [], 'ranges': {
            'min_length': {'small': 3, 'medium': 3, 'large': 2},
        }})
        result = self.db.search('views101/animals').includeDocs() \
                        .counts(['class', 'diet']).ranges(RANGES) \
                        .querySearchResult('class:mammal')
        self.assertIn(('ranges', RANGES), self.params())
        ranges = result.ranges
        self.assertEqual(1, len(ranges))
        self.assertEqual(3, len(ranges['min_length']))
        self.assertEqual(3, ranges['min_length']['small'])
        self.assertEqual(3, ranges['min_length']['medium'])
        self.assertEqual(2, ranges['min_length']['large'])
        self.assertEqual(8, ranges['min_length'].total)

    def testRangesAsDict(self):
        request = self.db.search('views101/animals') \
                         .ranges({'min_length': {'small': '[0 TO 1.0]'}}) \
                         .build('class:mammal')
        self.assertEqual('ranges=%7B%22min_length%22:%7B%22small%22:'
                         '%22%5B0%20TO%201.0%5D%22%7D%7D&q=class:mammal',
                         request.request.query_string)

    def testDrillDown(self):
        self.respond({'total_rows': 0, 'rows': [], 'ranges': {
            'min_length': {'small': 0, 'medium': 0, 'large': 0},
        }})
        result = self.db.search('views101/animals').includeDocs() \
                        .counts(['class', 'diet']).ranges(RANGES) \
                        .drillDown('class', 'mammals') \
                        .querySearchResult('class:mammal')
        self.assertIn(('drilldown', '["class","mammals"]'), self.params())
        buckets = result.ranges['min_length']
        self.assertEqual(3, len(buckets))
        self.assertEqual(0, buckets['small'])
        self.assertEqual(0, buckets['medium'])
        self.assertEqual(0, buckets['large'])

    def testDrillDownAccumulates(self):
        request = self.db.search('views101/animals') \
                         .drillDown('class', 'mammal') \
                         .drillDown('diet', 'herbivore').build('l*')
        self.assertEqual('drilldown=%5B%22class%22,%22mammal%22%5D&'
                         'drilldown=%5B%22diet%22,%22herbivore%22%5D&q=l*',
                         request.request.query_string)

    def testSort(self):
        self.respond({'total_rows': 3, 'rows': [
            Row('a', 'carnivore', 0), Row('b', 'herbivore', 1),
            Row('c', 'omnivore', 2),
        ]})
        result = self.db.search('views101/animals') \
                        .sort(RawJson('["diet<string>"]')) \
                        .querySearchResult('class:mammal')
        self.assertIn(('sort', '["diet<string>"]'), self.params())
        order = [row.order[0] for row in result.rows]
        self.assertListEqual(sorted(order), order)
        self.assertEqual('carnivore', result.rows[0].order[0])

    def testSortString(self):
        request = self.db.search('views101/animals').sort('-diet<string>') \
                         .build('l*')
        self.assertEqual('sort=%22-diet%3Cstring%3E%22&q=l*',
                         request.request.query_string)

    def testSortJsonText(self):
        request = self.db.search('views101/animals') \
                         .sort('["diet<string>"]').build('class:mammal')
        self.assertEqual('sort=%5B%22diet%3Cstring%3E%22%5D&q=class:mammal',
                         request.request.query_string)

    def testGroupSortJsonText(self):
        request = self.db.search('views101/animals').groupField('diet') \
                         .groupSort(' ["-diet<string>"]').build('l*')
        self.assertIn('group_sort=%20%5B%22-diet%3Cstring%3E%22%5D',
                      request.request.query_string)

    def testBuiltOptionsAreCopies(self):
        ranges = {'min_length': {'small': '[0 TO 1.0]'}}
        fields = ['class']
        request = self.db.search('views101/animals').ranges(ranges) \
                         .sort(fields).build('l*')
        ranges['min_length']['huge'] = '[9 TO 99]'
        fields.append('diet')
        self.assertEqual('ranges=%7B%22min_length%22:%7B%22small%22:'
                         '%22%5B0%20TO%201.0%5D%22%7D%7D&'
                         'sort=%5B%22class%22%5D&q=l*',
                         request.request.query_string)

    def testBookmark(self):
        self.respond({'total_rows': 4, 'bookmark': 'g1AAAAF',
                      'rows': [Row('a', 1.0, 0), Row('b', 1.0, 1)]})
        self.respond({'total_rows': 4, 'bookmark': 'g1AAAAG',
                      'rows': [Row('c', 1.0, 2), Row('d', 1.0, 3)]})
        first = self.db.search('views101/animals').limit(2) \
                       .querySearchResult('class:mammal')
        second = self.db.search('views101/animals').limit(2) \
                        .bookmark(first.bookmark) \
                        .querySearchResult('class:mammal')
        self.assertListEqual([('limit', '2'), ('bookmark', 'g1AAAAF'),
                              ('q', 'class:mammal')], self.params())
        first_ids = set(row.id for row in first.rows)
        second_ids = set(row.id for row in second.rows)
        self.assertFalse(first_ids & second_ids)

    def testIncludeAndHighlightFields(self):
        self.respond({'total_rows': 1, 'rows': [
            {'id': 'a', 'order': [1.0], 'fields': {'diet': 'omnivore'},
             'highlights': {'diet': ['<em>omni</em>vore']}},
        ]})
        result = self.db.search('views101/animals') \
                        .includeFields(['diet']).highlightFields(['diet']) \
                        .querySearchResult('diet:omni*')
        row = result.rows[0]
        self.assertEqual('omnivore', row.fields['diet'])
        self.assertListEqual(['<em>omni</em>vore'], row.highlights['diet'])

    def testQueryIsLast(self):
        request = self.db.search('views101/animals').stale().limit(1) \
                         .build('l*')
        self.assertEqual('stale=ok&limit=1&q=l*',
                         request.request.query_string)

    def testExecuteOnce(self):
        self.respond({'total_rows': 0, 'rows': []})
        request = self.db.search('views101/animals').build('l*')
        request.getResponse()
        self.assertRaises(RuntimeError, request.getResponse)

    def testUngroupedResponseWithGroups(self):
        self.respond({'total_rows': 0, 'groups': []})
        request = self.db.search('views101/animals').build('l*')
        self.assertRaises(DecodingError, request.getResponse)

    def testGroupedResponseWithRows(self):
        self.respond({'total_rows': 0, 'rows': []})
        request = self.db.search('views101/animals').groupField('class') \
                         .build('l*')
        self.assertRaises(DecodingError, request.getResponse)

    def testMalformedCounts(self):
        self.respond({'total_rows': 0, 'rows': [],
                      'counts': {'class': {'mammal': 'two'}}})
        request = self.db.search('views101/animals').build('l*')
        self.assertRaises(DecodingError, request.getResponse)


class SearchConstructionTests(StubDatabaseMixin, TestCase):

    def assertInvalid(self, builder, q='l*'):
        self.assertRaises(ConstructionError, builder.build, q)
        self.assertListEqual([], self.session.calls)

    def search(self):
        return self.db.search('views101/animals')

    def testEmptyQuery(self):
        self.assertInvalid(self.search(), '')
        self.assertInvalid(self.search(), None)

    def testBookmarkWithGroups(self):
        self.assertInvalid(self.search().bookmark('g1').groupField('class'))

    def testGroupOptionsRequireGroupField(self):
        self.assertInvalid(self.search().groupSort('-diet<string>'))
        self.assertInvalid(self.search().groupLimit(2))

    def testFieldLists(self):
        self.assertInvalid(self.search().counts([]))
        self.assertInvalid(self.search().includeFields(['']))
        self.assertInvalid(self.search().highlightFields([1]))

    def testLimits(self):
        self.assertInvalid(self.search().limit(0))
        self.assertInvalid(self.search().groupField('a').groupLimit(0))

    def testRanges(self):
        self.assertInvalid(self.search().ranges('{"min_length": '))
        self.assertInvalid(self.search().ranges('["small"]'))
        self.assertInvalid(self.search().ranges({'min_length': {'s': 1}}))

    def testSort(self):
        self.assertInvalid(self.search().sort(1))
        self.assertInvalid(self.search().sort([]))
        self.assertInvalid(self.search().sort(RawJson('{"a": 1}')))
        self.assertInvalid(self.search().option('sort', '["diet<string>"]'))

    def testDrillDown(self):
        self.assertInvalid(self.search().drillDown('class', 1))

    def testStale(self):
        self.assertInvalid(self.search().stale('update_after'))

    def testUnsupportedOptions(self):
        self.assertInvalid(self.search().option('q', 'other'))
        self.assertInvalid(self.search().option('reduce', False))

    def testDocumentType(self):
        self.assertRaises(ConstructionError, self.search().build, 'l*', 'doc')

    def testQueryGroupsRequiresGroupField(self):
        self.assertRaises(ConstructionError, self.search().queryGroups, 'l*')
        self.assertListEqual([], self.session.calls)


if __name__ == '__main__':
    main()
