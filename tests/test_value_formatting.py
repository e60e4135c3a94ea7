import unittest
from datetime import datetime

from value_formatting import (
    decode_entities,
    escape_csv_field,
    format_count,
    format_hours_minutes,
    format_integer,
    format_minutes,
    format_rating,
    format_size,
    format_timestamp,
    format_track_duration,
)


class TestDecodeEntities(unittest.TestCase):
    """
    Tests the entity table and its idempotency.
    """

    def test_decodes_table_entries(self) -> None:
        computed: str = decode_entities('Tom &amp; Jerry &ndash; &lt;Live&gt; &#8230; 1&#189; &#8220;hi&#8221;&nbsp;x')
        expected: str = 'Tom & Jerry - <Live> ... 1½ "hi" x'
        self.assertEqual(computed, expected)

    def test_apostrophe_variants(self) -> None:
        for raw in ('&#39;', '&#x27;', '&#8216;', '&#8217;', '&rsquo;', '&lsquo;'):
            with self.subTest(raw=raw):
                self.assertEqual(decode_entities(f'It{raw}s'), "It's")

    def test_mdash_and_superscript(self) -> None:
        self.assertEqual(decode_entities('a&mdash;b&#8212;c m&#179;'), 'a--b--c m³')

    def test_unknown_entities_pass_through(self) -> None:
        self.assertEqual(decode_entities('&copy; 2020 &foo;'), '&copy; 2020 &foo;')

    def test_idempotent(self) -> None:
        """
        Checks decode(decode(x)) == decode(x), including double-encoded input.
        """
        samples: list[str] = [
            'plain text',
            '&amp;quot;Special&amp;quot;',
            '&amp;amp;lt;',
            'Fish &amp; Chips &#8211; &copy;',
            '',
        ]
        for sample in samples:
            with self.subTest(sample=sample):
                once: str = decode_entities(sample)
                self.assertEqual(decode_entities(once), once)

    def test_empty(self) -> None:
        self.assertEqual(decode_entities(''), '')


class TestEscapeCsvField(unittest.TestCase):
    def test_doubles_quotes_only(self) -> None:
        self.assertEqual(escape_csv_field('say "hi", then\nleave'), 'say ""hi"", then\nleave')

    def test_decode_then_escape(self) -> None:
        """
        Checks that a decoded quote gets escaped (decoding runs first).
        """
        decoded: str = decode_entities('&quot;Special&quot;')
        self.assertEqual(decoded, '"Special"')
        self.assertEqual(escape_csv_field(decoded), '""Special""')


class TestDurations(unittest.TestCase):
    def test_7265000_ms(self) -> None:
        self.assertEqual(format_hours_minutes('7265000'), '2h 1m')
        self.assertEqual(format_minutes('7265000'), '121')
        self.assertEqual(format_track_duration('7265000'), '121:05')

    def test_under_an_hour(self) -> None:
        self.assertEqual(format_hours_minutes(2700000), '45m')
        self.assertEqual(format_track_duration(230500), '3:50')

    def test_minutes_truncate(self) -> None:
        self.assertEqual(format_minutes('119999'), '1')

    def test_missing_duration(self) -> None:
        for func in (format_minutes, format_hours_minutes, format_track_duration):
            with self.subTest(func=func.__name__):
                self.assertEqual(func(''), '')
                self.assertEqual(func(None), '')
                self.assertEqual(func('abc'), '')


class TestRatingSizeTimestamp(unittest.TestCase):
    def test_rating(self) -> None:
        self.assertEqual(format_rating('8.5'), '85%')
        self.assertEqual(format_rating(7.0), '70%')
        self.assertEqual(format_rating('10'), '100%')

    def test_rating_missing(self) -> None:
        self.assertEqual(format_rating(''), '')
        self.assertEqual(format_rating(None), '')
        self.assertEqual(format_rating('n/a'), '')

    def test_rating_rounds_half_up(self) -> None:
        self.assertEqual(format_rating('7.25'), '73%')
        self.assertEqual(format_rating('6.45'), '65%')

    def test_rating_non_finite(self) -> None:
        for raw in ('inf', '-inf', 'nan', '1e400'):
            with self.subTest(raw=raw):
                self.assertEqual(format_rating(raw), '')

    def test_size(self) -> None:
        self.assertEqual(format_size('1610612736'), '1.5GiB')
        self.assertEqual(format_size(''), '')
        self.assertEqual(format_size(None), '')

    def test_timestamp(self) -> None:
        expected: str = datetime.fromtimestamp(1700000000).strftime('%Y-%m-%d %H:%M:%S')
        self.assertEqual(format_timestamp('1700000000'), expected)
        self.assertEqual(format_timestamp('1700000000', '%Y'), datetime.fromtimestamp(1700000000).strftime('%Y'))

    def test_timestamp_invalid(self) -> None:
        self.assertEqual(format_timestamp(''), '')
        self.assertEqual(format_timestamp('yesterday'), '')
        self.assertEqual(format_timestamp('99999999999999999999'), '')


class TestCounts(unittest.TestCase):
    def test_counts_default_to_zero(self) -> None:
        self.assertEqual(format_count(''), '0')
        self.assertEqual(format_count(None), '0')
        self.assertEqual(format_count('12'), '12')

    def test_integer_columns_stay_empty(self) -> None:
        self.assertEqual(format_integer(''), '')
        self.assertEqual(format_integer('1999'), '1999')
        self.assertEqual(format_integer('19,99'), '')


class TestOverflowingInput(unittest.TestCase):
    """
    Checks that out-of-range numbers come back empty instead of raising.
    """

    def test_converters_never_raise(self) -> None:
        converters = (
            format_minutes,
            format_hours_minutes,
            format_track_duration,
            format_size,
            format_timestamp,
            format_integer,
        )
        for raw in ('1e400', 'inf', '-inf', 'nan'):
            for func in converters:
                with self.subTest(raw=raw, func=func.__name__):
                    self.assertEqual(func(raw), '')

    def test_count_defaults_to_zero(self) -> None:
        self.assertEqual(format_count('1e400'), '0')
        self.assertEqual(format_count('inf'), '0')

    def test_huge_byte_count(self) -> None:
        self.assertEqual(format_size('1' + '0' * 400), '')


if __name__ == '__main__':
    unittest.main()
