"""Tests for content-addressed duplicate detection."""

from photo_tidy.duplicates import build_duplicate_index, count_duplicate_files, duplicate_groups


class TestDuplicateIndex:
    """Test grouping of inventory records by content hash."""

    def test_same_hash_grouped_together(self, make_record):
        records = [
            make_record('/in/b/copy.jpg', content_hash='h1'),
            make_record('/in/a/orig.jpg', content_hash='h1'),
            make_record('/in/c/other.jpg', content_hash='h2'),
        ]

        index = build_duplicate_index(records)

        assert index == {'h1': ('/in/a/orig.jpg', '/in/b/copy.jpg')}

    def test_unique_files_not_grouped(self, make_record):
        records = [make_record(f'/in/{i}.jpg', content_hash=f'h{i}') for i in range(3)]

        assert build_duplicate_index(records) == {}
        assert duplicate_groups(records) == []
        assert count_duplicate_files(records) == 0

    def test_empty_hash_skipped(self, make_record):
        records = [make_record('/in/a.jpg', content_hash=''), make_record('/in/b.jpg', content_hash='')]

        assert build_duplicate_index(records) == {}

    def test_result_independent_of_input_order(self, make_record):
        records = [
            make_record('/in/z.jpg', content_hash='h1'),
            make_record('/in/a.jpg', content_hash='h1'),
            make_record('/in/m.jpg', content_hash='h1'),
        ]

        assert build_duplicate_index(records) == build_duplicate_index(list(reversed(records)))


class TestDuplicateGroups:
    """Test primary selection and derived totals."""

    def test_primary_is_smallest_path(self, make_record):
        records = [
            make_record('/in/z.jpg', content_hash='h1', size=10),
            make_record('/in/a.jpg', content_hash='h1', size=10),
            make_record('/in/m.jpg', content_hash='h1', size=10),
        ]

        groups = duplicate_groups(records)

        assert len(groups) == 1
        group = groups[0]
        assert group.primary.path == '/in/a.jpg'
        assert group.paths == ('/in/a.jpg', '/in/m.jpg', '/in/z.jpg')
        assert [r.path for r in group.redundant] == ['/in/m.jpg', '/in/z.jpg']
        assert group.total_size == 30
        assert group.space_savings == 20

    def test_duplicate_count_excludes_primaries(self, make_record):
        records = [
            make_record('/in/a.jpg', content_hash='h1'),
            make_record('/in/b.jpg', content_hash='h1'),
            make_record('/in/c.jpg', content_hash='h2'),
            make_record('/in/d.jpg', content_hash='h2'),
            make_record('/in/e.jpg', content_hash='h2'),
            make_record('/in/f.jpg', content_hash='h3'),
        ]

        assert [g.hash for g in duplicate_groups(records)] == ['h1', 'h2']
        assert count_duplicate_files(records) == 3
